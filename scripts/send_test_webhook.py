import os
import hmac
import hashlib
import json
import time
import requests
from dotenv import load_dotenv

# Load .env variables
load_dotenv()

# Get secret from .env
SECRET = os.getenv("PIPEDRIVE_WEBHOOK_SECRET")
URL = os.getenv("PIPENOTIFY_URL", "http://127.0.0.1:5000/api/v1/webhook/pipedrive")
COMPANY_ID = int(os.getenv("PIPEDRIVE_COMPANY_ID", "12345"))

# A v1-style "deal won" payload
payload = {
    "event": "updated.deal",
    "meta": {
        "object": "deal",
        "action": "updated",
        "id": 101,
        "company_id": COMPANY_ID,
        "user_id": 7,
        "host": "acme.pipedrive.com",
        "timestamp": int(time.time()),
    },
    "current": {"id": 101, "title": "Acme renewal", "value": 15000, "currency": "EUR",
                "status": "won", "stage_id": 4, "owner_name": "Dana"},
    "previous": {"status": "open", "stage_id": 4},
}

# Convert payload to JSON bytes
data = json.dumps(payload).encode("utf-8")

# Compute signature
signature = "sha256=" + hmac.new(SECRET.encode(), data, hashlib.sha256).hexdigest()

# Send POST request
resp = requests.post(
    URL,
    headers={
        "X-Pipedrive-Signature": signature,
        "Content-Type": "application/json"
    },
    data=data,
    timeout=10,
)

print("Status:", resp.status_code)
print("Response:", resp.json())
