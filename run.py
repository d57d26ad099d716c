import os
from dotenv import load_dotenv

# .env 파일 로드 (설정 클래스가 import 시점에 환경변수를 읽으므로 먼저 로드)
load_dotenv()

from app import create_app
from common.extensions import socketio

config_name = os.getenv('FLASK_ENV', 'development')

app = create_app(config_name)

if __name__ == '__main__':
    # 개발 환경에서는 debug=True, socketio 사용
    # 프로덕션 환경에서는 WSGI 서버(gunicorn 등) 사용 권장
    socketio.run(
        app,
        host='0.0.0.0',
        port=int(os.getenv('PORT', 5000)),
        debug=(config_name == 'development'),
        use_reloader=False
    )
