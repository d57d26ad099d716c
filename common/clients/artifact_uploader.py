import base64
import binascii
import hashlib
import io
import mimetypes
import re
from dataclasses import dataclass
from typing import Optional, Tuple

import requests
from PIL import Image, ImageDraw, ImageFont, UnidentifiedImageError

from app.models.signing_session import SignatureArtifact, SignatureKind
from common.exception.exceptions import ArtifactUploadError, InvalidSignatureError
from common.utils.logging_utils import get_logger

logger = get_logger('artifact_uploader')

DATA_URL_PATTERN = re.compile(r'^data:(?P<mime>[\w.+-]+/[\w.+-]+);base64,(?P<data>.+)$', re.DOTALL)

TYPED_SIGNATURE_SIZE = (400, 150)
TYPED_SIGNATURE_COLOR = '#1a365d'
TYPED_SIGNATURE_FONT_SIZE = 40


@dataclass
class UploadedArtifact:
    url: str
    content: bytes
    content_type: str
    file_name: str


def decode_data_url(data_url: str) -> Tuple[str, bytes]:
    match = DATA_URL_PATTERN.match(data_url or '')
    if not match:
        raise InvalidSignatureError("서명 이미지는 base64 data URL 형식이어야 합니다.")
    try:
        content = base64.b64decode(match.group('data'), validate=True)
    except (binascii.Error, ValueError) as e:
        raise InvalidSignatureError("서명 이미지 디코딩에 실패했습니다.") from e
    return match.group('mime'), content


def render_typed_signature(text: str, font_path: Optional[str] = None) -> bytes:
    """입력한 이름을 흰 배경 위 서명 이미지(PNG)로 렌더링"""
    text = (text or '').strip()
    if not text:
        raise InvalidSignatureError("서명할 이름을 입력해주세요.")

    image = Image.new('RGB', TYPED_SIGNATURE_SIZE, 'white')
    draw = ImageDraw.Draw(image)

    font = None
    if font_path:
        try:
            font = ImageFont.truetype(font_path, TYPED_SIGNATURE_FONT_SIZE)
        except OSError:
            logger.warning(f"서명 폰트를 불러오지 못했습니다: {font_path}")
    if font is None:
        font = ImageFont.load_default(size=TYPED_SIGNATURE_FONT_SIZE)

    left, top, right, bottom = draw.textbbox((0, 0), text, font=font)
    x = (TYPED_SIGNATURE_SIZE[0] - (right - left)) / 2 - left
    y = (TYPED_SIGNATURE_SIZE[1] - (bottom - top)) / 2 - top
    draw.text((x, y), text, fill=TYPED_SIGNATURE_COLOR, font=font)

    buffer = io.BytesIO()
    image.save(buffer, format='PNG')
    return buffer.getvalue()


class ArtifactUploader:
    """
    서명 아티팩트를 이미지로 변환해 오브젝트 스토리지에 업로드

    파일명과 Idempotency-Key를 내용 해시로 정하므로 재시도해도
    같은 객체가 다시 올라갈 뿐 결과물이 달라지지 않는다.
    """

    UPLOAD_PATH = '/api/Images/upload'

    def __init__(
        self,
        base_url: str,
        session: requests.Session = None,
        timeout: float = 10,
        max_bytes: int = 5 * 1024 * 1024,
        font_path: Optional[str] = None
    ):
        self.base_url = base_url.rstrip('/')
        self.session = session or requests.Session()
        self.timeout = timeout
        self.max_bytes = max_bytes
        self.font_path = font_path

    def prepare(self, artifact: SignatureArtifact) -> Tuple[bytes, str]:
        if artifact.kind == SignatureKind.TYPED:
            return render_typed_signature(artifact.payload, self.font_path), 'image/png'

        content_type, content = decode_data_url(artifact.payload)
        if not content_type.startswith('image/'):
            raise InvalidSignatureError("이미지 파일만 서명으로 사용할 수 있습니다.")
        if len(content) > self.max_bytes:
            raise InvalidSignatureError(f"서명 이미지가 너무 큽니다. 최대 {self.max_bytes // (1024 * 1024)}MB")

        if artifact.kind == SignatureKind.UPLOADED_FILE:
            #NOTE: 사용자가 고른 파일은 실제 이미지인지 확인
            try:
                with Image.open(io.BytesIO(content)) as image:
                    image.verify()
            except (UnidentifiedImageError, OSError) as e:
                raise InvalidSignatureError("이미지 파일을 읽을 수 없습니다.") from e

        return content, content_type

    def upload(self, artifact: SignatureArtifact) -> UploadedArtifact:
        content, content_type = self.prepare(artifact)
        file_name = self.content_file_name(content, content_type, prefix='signature')
        url = self.upload_bytes(content, content_type, file_name)
        logger.info(f"서명 이미지 업로드 완료 ({artifact.kind.value}): {url}")
        return UploadedArtifact(url=url, content=content, content_type=content_type, file_name=file_name)

    @staticmethod
    def content_file_name(content: bytes, content_type: str, prefix: str = 'file') -> str:
        digest = hashlib.sha256(content).hexdigest()
        extension = mimetypes.guess_extension(content_type) or ''
        return f"{prefix}-{digest[:16]}{extension}"

    def upload_bytes(self, content: bytes, content_type: str, file_name: Optional[str] = None) -> str:
        file_name = file_name or self.content_file_name(content, content_type)
        headers = {'Idempotency-Key': hashlib.sha256(content).hexdigest()}

        try:
            response = self.session.post(
                f"{self.base_url}{self.UPLOAD_PATH}",
                files={'File': (file_name, content, content_type)},
                headers=headers,
                timeout=self.timeout
            )
            response.raise_for_status()
        except requests.RequestException as e:
            logger.error(f"파일 업로드 실패 ({file_name}): {e}")
            raise ArtifactUploadError() from e

        url = self._extract_url(response)
        if not url:
            logger.error(f"업로드 응답에서 URL을 찾을 수 없습니다 ({file_name})")
            raise ArtifactUploadError()
        return url

    @staticmethod
    def _extract_url(response) -> Optional[str]:
        try:
            data = response.json()
        except ValueError:
            text = response.text.strip()
            return text or None

        if isinstance(data, str):
            return data
        if not isinstance(data, dict):
            return None

        nested = data.get('data')
        if isinstance(nested, dict):
            return nested.get('Url') or nested.get('url')
        if isinstance(nested, str):
            return nested
        return data.get('Url') or data.get('url')
