# Create the MongoDB indexes the leave portal queries rely on
# Usage: set env MONGODB_URI and MONGODB_DB_NAME, then run from a machine with access to the cluster
# Example: python scripts/init_mongo_indexes.py

import os

from pymongo import ASCENDING, MongoClient

MONGODB_URI = os.getenv("MONGODB_URI", "mongodb://mongodb:27017")
MONGODB_DB_NAME = os.getenv("MONGODB_DB_NAME", "portal")

client = MongoClient(MONGODB_URI)
db = client[MONGODB_DB_NAME]

leave_requests = db[os.getenv("LEAVE_COLLECTION", "leaveRequests")]
users = db[os.getenv("USERS_COLLECTION", "users")]

created = [
    # approver queue: pending requests at one level
    leave_requests.create_index([("status", ASCENDING), ("currentApprovalLevel", ASCENDING)]),
    # approver history (multikey on the actedBy array)
    leave_requests.create_index([("actedBy", ASCENDING), ("status", ASCENDING)]),
    # "my leaves"
    leave_requests.create_index([("userId", ASCENDING), ("submittedAt", ASCENDING)]),
    # approver lookup when a request is submitted
    users.create_index([("role", ASCENDING), ("department", ASCENDING)]),
    users.create_index([("email", ASCENDING)], unique=True),
]

print(f"Ensured indexes on {MONGODB_DB_NAME}: {', '.join(created)}")
