"""
Thin transport over the Gemini SDK.

The model is configured lazily on first use so that importing the package,
running tests, or browsing an existing archive never needs an API key.
"""
import os
import logging
from typing import Optional

import google.generativeai as genai

from .. import config
from ..exceptions import ClassificationTransportError

class GeminiClient:
    def __init__(self, api_key: Optional[str] = None, model_name: str = config.GEMINI_MODEL):
        self.api_key = api_key or os.getenv("GOOGLE_API_KEY")
        self.model_name = model_name
        self._model = None

    def _get_model(self):
        if self._model is None:
            if not self.api_key:
                raise ClassificationTransportError("GOOGLE_API_KEY is not set")
            try:
                genai.configure(api_key=self.api_key)
                self._model = genai.GenerativeModel(self.model_name)
            except Exception as e:
                raise ClassificationTransportError(f"Failed to initialize Gemini: {e}") from e
            logging.info(f"Initialized Gemini model {self.model_name}")
        return self._model

    def generate(self, prompt: str, json_mode: bool = False) -> str:
        """
        Sends one prompt and returns the response text.
        json_mode asks the model for an application/json body.

        Raises:
            ClassificationTransportError: on any SDK, network or quota failure.
        """
        model = self._get_model()
        generation_config = {"response_mime_type": "application/json"} if json_mode else None
        try:
            response = model.generate_content(prompt, generation_config=generation_config)
            # .text raises ValueError when the candidate was blocked
            return response.text or ""
        except Exception as e:
            raise ClassificationTransportError(f"Gemini call failed: {e}") from e
