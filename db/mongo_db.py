from pymongo import ASCENDING, DESCENDING, AsyncMongoClient

from logger import get_logger

logger = get_logger(__name__)

# Lookup patterns used by the question listing and taxonomy filters
QUESTION_INDEXES = [
    [("meta.subject._id", ASCENDING), ("meta.level", ASCENDING), ("meta.group", ASCENDING)],
    [("meta.mainChapter._id", ASCENDING)],
    [("a.chapter", ASCENDING)],
    [("a.topics.topicId", ASCENDING)],
    [("source.year", DESCENDING), ("source.board", ASCENDING)],
    [("createdAt", DESCENDING)],
]


class MongoDB:
    def __init__(
        self,
        uri,
        db_name,
    ):
        """Initializes the MongoDB client.

        The client connects lazily; call ping() to verify the server.

        Args:
            uri: MongoDB connection URI
            db_name: Database name
        """
        self.uri = uri
        self.db_name = db_name
        self.client = AsyncMongoClient(self.uri)
        self.db = self.client[self.db_name]

    async def ping(self):
        try:
            await self.client.admin.command("ping")
            logger.info(f"Connected to MongoDB, database: {self.db_name}")
        except Exception as e:
            logger.exception(f"Failed to connect to MongoDB: {e}")
            raise

    def get_collection(self, collection_name):
        return self.db[collection_name]

    async def ensure_question_indexes(self, collection_name):
        collection = self.get_collection(collection_name)
        for keys in QUESTION_INDEXES:
            await collection.create_index(keys)
        logger.info(f"Indexes ensured on '{collection_name}'")

    async def close(self):
        """Closes the MongoDB connection."""
        if self.client:
            await self.client.close()
            logger.info("MongoDB connection closed.")
