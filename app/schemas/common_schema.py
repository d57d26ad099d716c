from marshmallow import Schema, fields

class ErrorResponseSchema(Schema):
    result = fields.String(dump_default="fail", metadata={'description': '성공 여부'})
    message = fields.String(metadata={'description': '안내 메시지'})
    code = fields.String(metadata={'description': '에러 코드'})
    action = fields.String(metadata={'description': '다음 행동 (retry_step / resend_otp / restart / recheck_status / none)'})
    data = fields.Dict(allow_none=True, metadata={'description': '추가 정보'})
