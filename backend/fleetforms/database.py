from motor.motor_asyncio import AsyncIOMotorClient
from fleetforms.config import settings

client = AsyncIOMotorClient(settings.MONGO_URI)
db = client[settings.DB_NAME]

drafts_collection = db.drafts
