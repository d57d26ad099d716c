"""
외부 협력 서비스 클라이언트

- otp_client: OTP 발급/검증 (HTTP 또는 Redis 내장 발급기)
- artifact_uploader: 서명 이미지/PDF 스토리지 업로드
- contract_client: 계약 조회 및 서명 처리
"""

from .otp_client import OtpChallengeClient, RedisOtpChallengeService, OtpIssueResult
from .artifact_uploader import ArtifactUploader, UploadedArtifact
from .contract_client import ContractMutationClient, contract_field

__all__ = [
    'OtpChallengeClient',
    'RedisOtpChallengeService',
    'OtpIssueResult',
    'ArtifactUploader',
    'UploadedArtifact',
    'ContractMutationClient',
    'contract_field'
]
