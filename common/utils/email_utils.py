import secrets
import smtplib
import string
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from flask import current_app
from common.utils.logging_utils import get_logger

logger = get_logger('email_utils')


def generate_verification_code(length=6):
    return ''.join(secrets.choice(string.digits) for _ in range(length))


def send_signing_otp_email(to_email: str, code: str, contract_id: str, expire_minutes: int = 5) -> bool:
    try:
        smtp_server = current_app.config.get('SMTP_SERVER', 'smtp.gmail.com')
        smtp_port = current_app.config.get('SMTP_PORT', 465)
        smtp_username = current_app.config.get('SMTP_USERNAME')
        smtp_password = current_app.config.get('SMTP_PASSWORD')
        from_email = current_app.config.get('SMTP_FROM_EMAIL') or smtp_username

        contract_no = contract_id[:8] if contract_id else 'N/A'

        msg = MIMEMultipart('alternative')
        msg['Subject'] = f'[EZStay] Contract signing verification code ({contract_no})'
        msg['From'] = from_email
        msg['To'] = to_email

        html_body = f"""
        <!DOCTYPE html>
        <html>
          <head>
            <meta charset="UTF-8">
            <meta name="viewport" content="width=device-width, initial-scale=1.0">
          </head>
          <body style="margin: 0; padding: 0; background-color: #f3f4f6; font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, Arial, sans-serif;">
            <table width="100%" cellpadding="0" cellspacing="0" style="padding: 40px 20px;">
              <tr>
                <td align="center">
                  <table width="600" cellpadding="0" cellspacing="0" style="max-width: 600px; background-color: #ffffff; border-radius: 16px; overflow: hidden; border: 1px solid #e5e7eb;">

                    <!-- 헤더 -->
                    <tr>
                      <td style="background-color: #1a365d; padding: 32px 40px; text-align: center;">
                        <h1 style="color: #ffffff; margin: 0; font-size: 26px; font-weight: 700;">Contract Signature Verification</h1>
                      </td>
                    </tr>

                    <!-- 본문 -->
                    <tr>
                      <td style="padding: 36px 40px;">
                        <p style="color: #374151; font-size: 15px; line-height: 1.7; margin: 0 0 24px 0;">
                          You are signing lease contract <strong>{contract_no}</strong> on EZStay.<br>
                          Enter the code below to confirm your electronic signature.
                        </p>

                        <!-- 인증번호 박스 -->
                        <div style="background-color: #f0f5ff; border: 2px solid #1a365d; border-radius: 12px; padding: 28px; text-align: center;">
                          <p style="color: #1a365d; font-size: 12px; margin: 0 0 10px 0; letter-spacing: 3px; font-weight: 600;">VERIFICATION CODE</p>
                          <h2 style="color: #111827; margin: 0; font-size: 40px; letter-spacing: 10px; font-family: 'Courier New', monospace;">{code}</h2>
                        </div>

                        <!-- 안내 사항 -->
                        <p style="color: #6b7280; font-size: 13px; line-height: 1.7; margin: 24px 0 0 0;">
                          • The code is valid for <strong>{expire_minutes} minutes</strong> and can be used once.<br>
                          • If you did not request this, ignore this email. Your contract will not be signed.<br>
                          • Never share this code with anyone.
                        </p>
                      </td>
                    </tr>

                    <!-- 푸터 -->
                    <tr>
                      <td style="background-color: #f9fafb; padding: 24px 40px; text-align: center; border-top: 1px solid #e5e7eb;">
                        <p style="color: #9ca3af; font-size: 12px; margin: 0;">This is an automated message from EZStay. Please do not reply.</p>
                      </td>
                    </tr>

                  </table>
                </td>
              </tr>
            </table>
          </body>
        </html>
        """

        text_body = f"""
        EZStay contract signature verification

        You are signing lease contract {contract_no}.
        Verification code: {code}

        The code is valid for {expire_minutes} minutes and can be used once.
        If you did not request this, ignore this email.
        """

        part1 = MIMEText(text_body, 'plain')
        part2 = MIMEText(html_body, 'html')

        msg.attach(part1)
        msg.attach(part2)

        if smtp_port == 465:
            with smtplib.SMTP_SSL(smtp_server, smtp_port) as server:
                if smtp_username and smtp_password:
                    server.login(smtp_username, smtp_password)
                server.send_message(msg)
        else:
            with smtplib.SMTP(smtp_server, smtp_port) as server:
                server.starttls()
                if smtp_username and smtp_password:
                    server.login(smtp_username, smtp_password)
                server.send_message(msg)

        return True

    except Exception as e:
        logger.error(f"Error sending signing OTP email: {e}")
        return False
