from __future__ import annotations

import argparse
import json
import os
import time

import requests


def main() -> None:
    parser = argparse.ArgumentParser(description="Post a simulated inbound WhatsApp text to /webhook")
    parser.add_argument("text", help="Message body")
    parser.add_argument("--phone", default=os.getenv("BUDGETBOT_TEST_PHONE", "56900000000"))
    parser.add_argument("--base-url", default=os.getenv("BUDGETBOT_BASE_URL", "http://127.0.0.1:3000"))
    args = parser.parse_args()

    message = {
        "from": args.phone,
        "id": f"wamid.manual.{int(time.time() * 1000)}",
        "type": "text",
        "text": {"body": args.text},
    }
    payload = {"object": "whatsapp_business_account", "entry": [{"changes": [{"value": {"messages": [message]}}]}]}
    response = requests.post(f"{args.base_url.rstrip('/')}/webhook", json=payload, timeout=20)
    print(f"status={response.status_code}")
    print(json.dumps(response.json(), indent=2))


if __name__ == "__main__":
    main()
