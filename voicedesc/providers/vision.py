"""
Vision-description adapter for Amazon Bedrock, and response parsing.
"""
import base64
import json
import logging
from typing import Any, ClassVar, List, Optional, Type

import boto3
from pydantic import BaseModel, ValidationError as PydanticValidationError

from voicedesc.config import AWS_REGION, NOVA_MODEL_ID, VISION_MAX_TOKENS, VISION_TEMPERATURE
from voicedesc.providers.base import VisionDescriber, VisionText
from voicedesc.services.retry import call_with_retry, run_blocking

logger = logging.getLogger(__name__)


class _Shape(BaseModel):
    """A known provider response shape. Subclasses expose ``text``."""
    shape: ClassVar[str]

    @property
    def text(self) -> str:
        raise NotImplementedError


class _TextPart(BaseModel):
    text: str


class _ContentList(_Shape):
    """``{"content": [{"text": ...}]}``"""
    shape: ClassVar[str] = 'content'
    content: List[_TextPart]

    @property
    def text(self) -> str:
        return self.content[0].text


class _Message(BaseModel):
    content: List[_TextPart]


class _Output(BaseModel):
    message: _Message


class _OutputMessage(_Shape):
    """``{"output": {"message": {"content": [{"text": ...}]}}}`` (Nova)"""
    shape: ClassVar[str] = 'output_message'
    output: _Output

    @property
    def text(self) -> str:
        return self.output.message.content[0].text


class _ChoiceMessage(BaseModel):
    content: str


class _Choice(BaseModel):
    message: _ChoiceMessage


class _Choices(_Shape):
    """``{"choices": [{"message": {"content": ...}}]}``"""
    shape: ClassVar[str] = 'choices'
    choices: List[_Choice]

    @property
    def text(self) -> str:
        return self.choices[0].message.content


class _Result(_Shape):
    """``{"result": ...}``"""
    shape: ClassVar[str] = 'result'
    result: str

    @property
    def text(self) -> str:
        return self.result


_KNOWN_SHAPES: List[Type[_Shape]] = [_OutputMessage, _ContentList, _Choices, _Result]


def parse_vision_response(payload: Any) -> VisionText:
    """
    Extract description text from a provider response.

    Known shapes are tried in order; the first that validates and carries
    non-blank text wins. Anything else is captured verbatim and flagged so a
    malformed response never turns into silently empty narration.
    """
    if isinstance(payload, dict):
        for shape_cls in _KNOWN_SHAPES:
            try:
                parsed = shape_cls.model_validate(payload)
                text = parsed.text.strip()
            except (PydanticValidationError, IndexError):
                continue
            if text:
                return VisionText(text=text, shape=shape_cls.shape)

    raw = payload if isinstance(payload, str) else json.dumps(payload, default=str)
    logger.warning('Unrecognised vision response, capturing raw payload: %.200s', raw)
    return VisionText(text=f'Unparsed description: {raw}', shape='raw', flagged=True)


def detect_image_format(image_bytes: bytes) -> str:
    if image_bytes.startswith(b'\x89PNG'):
        return 'png'
    if image_bytes[:6] in (b'GIF87a', b'GIF89a'):
        return 'gif'
    if image_bytes[:4] == b'RIFF' and image_bytes[8:12] == b'WEBP':
        return 'webp'
    return 'jpeg'


class BedrockVisionDescriber(VisionDescriber):
    """Describes images with a Bedrock multimodal model (Nova message format)."""

    def __init__(
        self,
        client=None,
        region: str = AWS_REGION,
        model_id: str = NOVA_MODEL_ID,
        max_tokens: int = VISION_MAX_TOKENS,
        temperature: float = VISION_TEMPERATURE,
    ):
        self._client = client
        self._region = region
        self._model_id = model_id
        self._max_tokens = max_tokens
        self._temperature = temperature

    @property
    def client(self):
        if self._client is None:
            self._client = boto3.client('bedrock-runtime', region_name=self._region)
        return self._client

    def build_request(self, image_bytes: bytes, prompt: str) -> dict:
        return {
            'messages': [{
                'role': 'user',
                'content': [
                    {'text': prompt},
                    {
                        'image': {
                            'format': detect_image_format(image_bytes),
                            'source': {'bytes': base64.b64encode(image_bytes).decode('ascii')},
                        },
                    },
                ],
            }],
            'inferenceConfig': {
                'maxTokens': self._max_tokens,
                'temperature': self._temperature,
            },
        }

    async def describe(self, image_bytes: bytes, prompt: str) -> VisionText:
        body = json.dumps(self.build_request(image_bytes, prompt))

        async def invoke():
            response = await run_blocking(
                self.client.invoke_model,
                modelId=self._model_id,
                contentType='application/json',
                accept='application/json',
                body=body,
            )
            return await run_blocking(response['body'].read)

        raw = await call_with_retry(invoke, operation_name='Vision analysis')
        logger.debug('Vision response: %.500s', raw)
        return parse_vision_response(_decode(raw))


def _decode(raw: bytes) -> Optional[Any]:
    text = raw.decode('utf-8', errors='replace') if isinstance(raw, bytes) else str(raw)
    try:
        return json.loads(text)
    except ValueError:
        return text
