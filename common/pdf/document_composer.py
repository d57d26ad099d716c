import base64
import binascii
import io
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Union

import requests
from reportlab.lib.colors import HexColor
from reportlab.lib.pagesizes import A4
from reportlab.lib.utils import ImageReader, simpleSplit
from reportlab.pdfgen import canvas

from common.clients.contract_client import contract_field
from common.utils.logging_utils import get_logger

logger = get_logger('document_composer')

PAGE_WIDTH, PAGE_HEIGHT = A4
MARGIN = 56
LINE_HEIGHT = 15
BODY_FONT = 'Helvetica'
BOLD_FONT = 'Helvetica-Bold'
BODY_FONT_SIZE = 10

SIGNATURE_BOX_WIDTH = 170
SIGNATURE_BOX_HEIGHT = 80

SignatureSource = Union[bytes, str, None]


def _parse_date(value) -> Optional[date]:
    if not value:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return datetime.fromisoformat(str(value).replace('Z', '+00:00')).date()
    except ValueError:
        return None


def _format_date(value) -> str:
    parsed = _parse_date(value)
    return parsed.strftime('%d/%m/%Y') if parsed else 'N/A'


def _format_money(value) -> str:
    try:
        return f"{int(float(value)):,} VND"
    except (TypeError, ValueError):
        return 'N/A'


class DocumentComposer:
    """
    서명 완료 계약서 PDF 생성 (커밋 이후 best-effort 단계)

    render(): 계약 정보 + 양측 서명 이미지로 A4 PDF 바이트 생성
    compose_and_upload(): 렌더링 후 스토리지 업로드, 업로드 URL 반환
    """

    def __init__(
        self,
        uploader,
        lessor_name: str = 'EZStay Property Management',
        session: requests.Session = None,
        timeout: float = 10
    ):
        self.uploader = uploader
        self.lessor_name = lessor_name
        self.session = session or requests.Session()
        self.timeout = timeout

    @staticmethod
    def file_name_for(contract: Dict[str, Any], on: Optional[date] = None) -> str:
        contract_id = str(contract_field(contract, 'id', 'unknown'))
        on = on or date.today()
        return f"Contract-{contract_id[:8]}-signed-{on.isoformat()}.pdf"

    def compose_and_upload(
        self,
        contract: Dict[str, Any],
        signer_signature: SignatureSource,
        owner_signature: SignatureSource = None
    ) -> str:
        pdf = self.render(contract, signer_signature, owner_signature)
        file_name = self.file_name_for(contract)
        url = self.uploader.upload_bytes(pdf, 'application/pdf', file_name)
        logger.info(f"서명 계약서 PDF 업로드 완료: {file_name}")
        return url

    def render(
        self,
        contract: Dict[str, Any],
        signer_signature: SignatureSource,
        owner_signature: SignatureSource = None
    ) -> bytes:
        buffer = io.BytesIO()
        pdf = canvas.Canvas(buffer, pagesize=A4)
        pdf.setTitle(f"House Lease Contract {str(contract_field(contract, 'id', ''))[:8]}")

        self._y = PAGE_HEIGHT - MARGIN
        self._draw_header(pdf, contract)
        self._draw_parties(pdf, contract)
        self._draw_terms(pdf, contract)
        self._draw_signatures(
            pdf,
            contract,
            self._load_image(owner_signature, 'owner'),
            self._load_image(signer_signature, 'signer')
        )

        pdf.showPage()
        pdf.save()
        return buffer.getvalue()

    # ========================================
    # 레이아웃
    # ========================================

    def _ensure_space(self, pdf, height: float):
        if self._y - height < MARGIN:
            pdf.showPage()
            self._y = PAGE_HEIGHT - MARGIN

    def _centered(self, pdf, text: str, font: str = BOLD_FONT, size: int = 12):
        self._ensure_space(pdf, LINE_HEIGHT)
        pdf.setFont(font, size)
        pdf.drawCentredString(PAGE_WIDTH / 2, self._y, text)
        self._y -= LINE_HEIGHT + (size - BODY_FONT_SIZE)

    def _line(self, pdf, text: str, font: str = BODY_FONT):
        self._ensure_space(pdf, LINE_HEIGHT)
        pdf.setFont(font, BODY_FONT_SIZE)
        pdf.drawString(MARGIN, self._y, text)
        self._y -= LINE_HEIGHT

    def _paragraph(self, pdf, text: str):
        for line in simpleSplit(text, BODY_FONT, BODY_FONT_SIZE, PAGE_WIDTH - 2 * MARGIN):
            self._line(pdf, line)
        self._y -= LINE_HEIGHT / 2

    def _draw_header(self, pdf, contract):
        self._centered(pdf, 'SOCIALIST REPUBLIC OF VIETNAM')
        self._centered(pdf, 'Independence - Freedom - Happiness', font=BODY_FONT, size=BODY_FONT_SIZE)
        self._y -= LINE_HEIGHT
        self._centered(pdf, 'HOUSE LEASE CONTRACT', size=16)
        self._y -= LINE_HEIGHT / 2

        contract_id = str(contract_field(contract, 'id', 'N/A'))
        self._line(pdf, f"Contract No: {contract_id[:8]}")
        self._line(pdf, f"Created Date: {_format_date(contract_field(contract, 'createdAt'))}")
        self._line(pdf, f"Status: {contract_field(contract, 'contractStatus', 'N/A')}")
        self._y -= LINE_HEIGHT / 2

    def _draw_parties(self, pdf, contract):
        self._line(pdf, 'THE CONTRACTING PARTIES:', font=BOLD_FONT)
        self._line(pdf, f"Party A (Lessor): {self.lessor_name}")
        self._y -= LINE_HEIGHT / 2

        profiles: List[Dict] = contract_field(contract, 'identityProfiles', []) or []
        tenant = profiles[0] if profiles else {}
        if not tenant:
            self._line(pdf, 'Note: Tenant information will be completed upon signing')

        self._line(pdf, f"Party B (Lessee): {contract_field(tenant, 'fullName', 'N/A')}")
        self._line(pdf, f"Address: {contract_field(tenant, 'address', 'N/A')}")
        self._line(pdf, f"Phone: {contract_field(tenant, 'phoneNumber', 'N/A')}")
        self._line(pdf, f"Email: {contract_field(tenant, 'email', 'N/A')}")
        self._line(pdf, f"Citizen ID: {contract_field(tenant, 'citizenIdNumber', 'N/A')}")
        self._y -= LINE_HEIGHT / 2

    def _draw_terms(self, pdf, contract):
        room = contract_field(contract, 'roomDetails', {}) or {}
        checkin = _parse_date(contract_field(contract, 'checkinDate'))
        checkout = _parse_date(contract_field(contract, 'checkoutDate'))
        months = round((checkout - checkin).days / 30) if checkin and checkout else 'N/A'

        self._line(pdf, 'ARTICLE 1: THE HOUSE FOR LEASE', font=BOLD_FONT)
        self._paragraph(
            pdf,
            f"Party A agrees to lease to Party B the room {contract_field(room, 'name', 'N/A')} "
            f"located at {contract_field(room, 'address', 'N/A')} for residential purposes."
        )

        self._line(pdf, 'ARTICLE 2: DURATION OF THE LEASE', font=BOLD_FONT)
        self._paragraph(
            pdf,
            f"Duration of the lease: {months} months, commencing on {_format_date(checkin)} "
            f"and ending on {_format_date(checkout)}."
        )

        rent = contract_field(contract, 'roomPrice') or contract_field(room, 'price')
        self._line(pdf, 'ARTICLE 3: RENTAL FEE AND SECURITY DEPOSIT', font=BOLD_FONT)
        self._paragraph(
            pdf,
            f"Monthly rental fee: {_format_money(rent)}. "
            f"Security deposit: {_format_money(contract_field(contract, 'depositAmount', 0))}, "
            f"returned within fifteen (15) days after termination less outstanding bills and damages."
        )

        utilities = []
        for label, name, unit in (('Electricity', 'electricityReading', 'kWh'), ('Water', 'waterReading', 'm3')):
            reading = contract_field(contract, name)
            if reading:
                utilities.append(
                    f"{label}: {contract_field(reading, 'currentIndex', 0)} {unit} "
                    f"at {_format_money(contract_field(reading, 'price', 0))} per {unit}"
                )
        if utilities:
            self._line(pdf, 'ARTICLE 4: UTILITIES', font=BOLD_FONT)
            for text in utilities:
                self._line(pdf, f"- {text}")
            self._y -= LINE_HEIGHT / 2

    def _draw_signatures(self, pdf, contract, owner_image, signer_image):
        self._ensure_space(pdf, SIGNATURE_BOX_HEIGHT + LINE_HEIGHT * 4)
        self._centered(pdf, 'SIGNATURES OF THE PARTIES')
        self._y -= LINE_HEIGHT / 2

        left_x = MARGIN
        right_x = PAGE_WIDTH - MARGIN - SIGNATURE_BOX_WIDTH
        pdf.setFont(BOLD_FONT, BODY_FONT_SIZE)
        pdf.drawCentredString(left_x + SIGNATURE_BOX_WIDTH / 2, self._y, 'PARTY A (LESSOR)')
        pdf.drawCentredString(right_x + SIGNATURE_BOX_WIDTH / 2, self._y, 'PARTY B (LESSEE)')
        self._y -= LINE_HEIGHT

        box_bottom = self._y - SIGNATURE_BOX_HEIGHT
        for x, image in ((left_x, owner_image), (right_x, signer_image)):
            pdf.setStrokeColor(HexColor('#9ca3af'))
            pdf.rect(x, box_bottom, SIGNATURE_BOX_WIDTH, SIGNATURE_BOX_HEIGHT)
            if image is not None:
                pdf.drawImage(
                    image, x + 4, box_bottom + 4,
                    width=SIGNATURE_BOX_WIDTH - 8, height=SIGNATURE_BOX_HEIGHT - 8,
                    preserveAspectRatio=True, anchor='c', mask='auto'
                )
            else:
                pdf.setFont(BODY_FONT, BODY_FONT_SIZE)
                pdf.drawCentredString(x + SIGNATURE_BOX_WIDTH / 2, box_bottom + SIGNATURE_BOX_HEIGHT / 2, 'not signed yet')
        self._y = box_bottom - LINE_HEIGHT

        profiles = contract_field(contract, 'identityProfiles', []) or []
        tenant_name = contract_field(profiles[0], 'fullName', '') if profiles else ''
        pdf.setFont(BODY_FONT, BODY_FONT_SIZE)
        pdf.drawCentredString(left_x + SIGNATURE_BOX_WIDTH / 2, self._y, self.lessor_name)
        pdf.drawCentredString(right_x + SIGNATURE_BOX_WIDTH / 2, self._y, tenant_name)
        self._y -= LINE_HEIGHT

    # ========================================
    # 서명 이미지 로딩
    # ========================================

    def _load_image(self, source: SignatureSource, label: str) -> Optional[ImageReader]:
        if not source:
            return None

        content = source
        if isinstance(source, str):
            if source.startswith('data:'):
                try:
                    content = base64.b64decode(source.split(',', 1)[1])
                except (IndexError, binascii.Error, ValueError):
                    logger.warning(f"{label} 서명 data URL을 해석할 수 없어 미서명으로 표시합니다")
                    return None
            else:
                #NOTE: URL로 주어진 서명은 내려받아서 사용, 실패 시 미서명 처리
                try:
                    response = self.session.get(source, timeout=self.timeout)
                    response.raise_for_status()
                    content = response.content
                except requests.RequestException as e:
                    logger.warning(f"{label} 서명 이미지 다운로드 실패: {e}")
                    return None

        try:
            return ImageReader(io.BytesIO(content))
        except Exception as e:
            logger.warning(f"{label} 서명 이미지를 읽을 수 없습니다: {e}")
            return None
