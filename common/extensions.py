from flask_socketio import SocketIO
from flask_smorest import Api
from flask_apscheduler import APScheduler

socketio = SocketIO(cors_allowed_origins="*")

api = Api()

redis_client = None

mongo_client = None
mongo_db = None

scheduler = APScheduler()
