from typing import Any, Dict, Optional

import requests

from common.enum.error_code import APIError
from common.exception.exceptions import (
    BusinessError,
    CommitOutcomeUnknownError,
    ContractSignError,
    ExternalServiceError
)
from common.utils.logging_utils import get_logger

logger = get_logger('contract_client')

#NOTE: 게이트웨이 타임아웃은 서버에서 반영됐는지 알 수 없음
AMBIGUOUS_STATUS_CODES = frozenset({504})

SIGNED_STATUSES = frozenset({'signed', 'active'})


def contract_field(contract: Dict[str, Any], name: str, default=None):
    """계약 응답 필드를 camelCase / PascalCase 모두에서 조회"""
    if not contract:
        return default
    pascal = name[:1].upper() + name[1:]
    value = contract.get(name)
    if value is None:
        value = contract.get(pascal)
    return default if value is None else value


class ContractMutationClient:

    def __init__(self, base_url: str, session: requests.Session = None, timeout: float = 10):
        self.base_url = base_url.rstrip('/')
        self.session = session or requests.Session()
        self.timeout = timeout

    def get_contract(self, contract_id: str) -> Dict[str, Any]:
        try:
            response = self.session.get(
                f"{self.base_url}/api/Contract/{contract_id}",
                timeout=self.timeout
            )
        except requests.RequestException as e:
            logger.error(f"계약 조회 실패 - contract: {contract_id}, error: {e}")
            raise ExternalServiceError() from e

        if response.status_code == 404:
            raise BusinessError(APIError.CONTRACT_NOT_FOUND)
        if response.status_code >= 400:
            logger.error(f"계약 조회 실패 - contract: {contract_id}, status: {response.status_code}")
            raise ExternalServiceError()

        data = response.json()
        #NOTE: 게이트웨이에 따라 {"data": {...}}로 감싸서 오는 경우가 있음
        if isinstance(data, dict) and isinstance(data.get('data'), dict):
            return data['data']
        return data

    def sign(self, contract_id: str, signature_url: str, idempotency_key: Optional[str] = None) -> None:
        """
        계약 서명 처리 (사가의 커밋 지점)

        - 요청이 서버에 도달하지 않은 실패 -> ContractSignError (커밋 전, 안전)
        - 응답을 받지 못한 실패 -> CommitOutcomeUnknownError (반영 여부 불명)
        """
        headers = {'Content-Type': 'application/json'}
        if idempotency_key:
            headers['Idempotency-Key'] = idempotency_key

        try:
            response = self.session.put(
                f"{self.base_url}/api/Contract/{contract_id}/sign-contract",
                json=signature_url,
                headers=headers,
                timeout=self.timeout
            )
        except requests.ConnectTimeout as e:
            logger.error(f"계약 서명 요청 연결 실패 - contract: {contract_id}, error: {e}")
            raise ContractSignError("계약 서비스에 연결할 수 없습니다.") from e
        except (requests.ReadTimeout, requests.ConnectionError, requests.exceptions.ChunkedEncodingError) as e:
            logger.error(f"계약 서명 응답 수신 실패 (결과 불명) - contract: {contract_id}, error: {e}")
            raise CommitOutcomeUnknownError() from e
        except requests.RequestException as e:
            logger.error(f"계약 서명 요청 실패 - contract: {contract_id}, error: {e}")
            raise ContractSignError() from e

        if response.status_code in AMBIGUOUS_STATUS_CODES:
            logger.error(f"계약 서명 게이트웨이 타임아웃 (결과 불명) - contract: {contract_id}")
            raise CommitOutcomeUnknownError()
        if response.status_code >= 400:
            logger.error(f"계약 서명 거부 - contract: {contract_id}, status: {response.status_code}, body: {response.text[:200]}")
            raise ContractSignError(status_code=response.status_code)

    def attach_signed_pdf(self, contract_id: str, pdf_url: str) -> None:
        response = self.session.put(
            f"{self.base_url}/api/Contract/{contract_id}/signed-pdf",
            json={'signedPdfUrl': pdf_url},
            timeout=self.timeout
        )
        response.raise_for_status()

    @staticmethod
    def is_signed(contract: Dict[str, Any]) -> bool:
        if contract_field(contract, 'tenantSignature'):
            return True
        if contract_field(contract, 'isSigned') is True:
            return True
        status = contract_field(contract, 'contractStatus', '')
        return str(status).lower() in SIGNED_STATUSES

    @staticmethod
    def signer_profile(contract: Dict[str, Any]) -> Dict[str, Optional[str]]:
        """계약의 대표 신원 정보 (서명 화면 프리필용)"""
        profiles = contract_field(contract, 'identityProfiles', []) or []
        primary = profiles[0] if profiles else {}
        return {
            'name': contract_field(primary, 'fullName'),
            'phone': contract_field(primary, 'phoneNumber'),
            'email': contract_field(primary, 'email') or contract_field(contract, 'tenantEmail')
        }
