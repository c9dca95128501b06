"""
AI-assisted batik features: free-text answers from an OpenAI chat model,
and motif classification of an uploaded image by the batik model service.
"""

import logging
from typing import Any, Optional

import httpx
from openai import AsyncOpenAI, OpenAIError

from nitikbatik.config import Settings
from nitikbatik.errors import (
    TIMEOUT_MESSAGE,
    ApiError,
    FormValidationError,
    NetworkError,
    RequestSetupError,
    ResponseError,
)

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "Kamu adalah pakar budaya Indonesia yang memiliki pengetahuan mendalam tentang "
    "berbagai jenis batik, sejarahnya, dan nilai budayanya. Berikan informasi yang "
    "faktual dan mendetail."
)

ANALYSIS_PROMPT = """Berikan informasi lengkap tentang batik {batik} dalam format berikut:
1. Sejarah dan asal: (jelaskan sejarah dan asal usul batik ini)
2. Karakteristik visual: (jelaskan ciri khas visual batiknya)
3. Makna dan filosofi: (jelaskan makna filosofis dan simbolis dibalik motif batik)
4. Penggunaan dalam budaya: (jelaskan kapan dan dalam acara apa batik ini biasanya digunakan)
5. Nilai budaya: (jelaskan nilai budaya dan pentingnya dalam masyarakat Indonesia)

Berikan informasi yang faktual dan mendalam. Jangan terlalu panjang, sekitar 3-4 kalimat per bagian."""

ANALYSIS_FAILED = "Gagal mendapatkan analisis. Silakan coba lagi."


class BatikAssistant:
    def __init__(
        self,
        settings: Settings,
        openai_client: Optional[AsyncOpenAI] = None,
        http: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.settings = settings
        if openai_client is None and settings.openai_api_key:
            openai_client = AsyncOpenAI(api_key=settings.openai_api_key)
        self._openai = openai_client
        self._http = http or httpx.AsyncClient(timeout=settings.request_timeout)

    async def aclose(self) -> None:
        await self._http.aclose()

    async def describe(self, prompt: str) -> str:
        if not prompt or not prompt.strip():
            raise FormValidationError(["prompt"])
        if self._openai is None:
            raise RequestSetupError("OpenAI API key is not configured")

        response = await self._openai.chat.completions.create(
            model=self.settings.openai_model,
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            max_tokens=600,
            temperature=0.7,
        )
        return response.choices[0].message.content or ""

    async def classify(self, image_url: str) -> str:
        """Ask the classifier which motif the image at `image_url` shows."""
        if not image_url:
            raise FormValidationError(["img"])
        try:
            response = await self._http.post(self.settings.classifier_url, json={"img": image_url})
            response.raise_for_status()
        except httpx.TimeoutException as exc:
            raise NetworkError(TIMEOUT_MESSAGE, timed_out=True) from exc
        except httpx.HTTPStatusError as exc:
            logger.error("classifier answered %s", exc.response.status_code)
            raise ResponseError("Classification failed",
                                status_code=exc.response.status_code) from exc
        except httpx.TransportError as exc:
            logger.error("classifier unreachable: %s", exc)
            raise NetworkError() from exc

        try:
            prediction = response.json()["prediksi"]
        except (ValueError, KeyError, TypeError) as exc:
            raise ResponseError("Invalid response format",
                                status_code=response.status_code) from exc
        # either {"class": ...} or the bare class name
        if isinstance(prediction, dict):
            prediction = prediction.get("class")
        if not isinstance(prediction, str) or not prediction:
            raise ResponseError("Invalid response format", status_code=response.status_code)
        return prediction

    async def analyze(self, image_url: str) -> dict[str, Any]:
        """Classify the image, then ask the chat model about that motif.

        Classification errors propagate. A failed analysis still returns the
        class, with a notice in place of the text.
        """
        batik = await self.classify(image_url)
        try:
            analysis = await self.describe(ANALYSIS_PROMPT.format(batik=batik))
        except (ApiError, OpenAIError) as exc:
            logger.error("analysis of %s failed: %s", batik, exc)
            analysis = ANALYSIS_FAILED
        return {"class": batik, "analysis": analysis}
