# Copyright 2025 Google LLC
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
# ==============================================================================

import base64
import json
import logging
import re
from typing import Any, List

from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from shared.constants import ANALYSIS_MODEL

logger = logging.getLogger(__name__)

_CODE_FENCE = re.compile(r"```(?:json)?")


class GeminiInvalidResponseException(Exception):
    pass


class AnalysisError(Exception):
    """Upstream model failure carrying the provider's status code, if any."""

    def __init__(self, message: str, code: int | None = None):
        super().__init__(message)
        self.code = code


def strip_code_fences(text: str) -> str:
    return _CODE_FENCE.sub("", text).strip()


def to_content_parts(parts: List[dict]) -> List[types.Part]:
    """Convert `{text}` / `{inlineData: {data, mimeType}}` dicts to SDK parts."""
    converted = []
    for part in parts:
        inline = part.get("inlineData")
        if inline:
            converted.append(
                types.Part.from_bytes(
                    data=base64.b64decode(inline["data"]),
                    mime_type=inline["mimeType"],
                )
            )
        elif part.get("text") is not None:
            converted.append(types.Part.from_text(text=part["text"]))
    return converted


def call_analysis(
    system_instruction: str,
    parts: List[dict],
    api_key: str,
    model: str = ANALYSIS_MODEL,
) -> Any:
    """
    Send prompt parts to Gemini with a JSON response type and return the
    parsed JSON value.
    """
    client = genai.Client(api_key=api_key)
    try:
        response = client.models.generate_content(
            model=model,
            contents=to_content_parts(parts),
            config=types.GenerateContentConfig(
                system_instruction=system_instruction,
                response_mime_type="application/json",
            ),
        )
    except genai_errors.APIError as exc:
        logger.error("Gemini call failed with code %s: %s", exc.code, exc.message)
        raise AnalysisError(exc.message or str(exc), code=exc.code) from exc

    text = strip_code_fences(response.text or "{}")
    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        logger.error("Gemini returned non-JSON output: %s", text[:200])
        raise GeminiInvalidResponseException(str(exc)) from exc
