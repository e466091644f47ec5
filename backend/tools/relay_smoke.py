import argparse
import json
import urllib.error
import urllib.request
from uuid import uuid4


def call_json(
    url: str,
    payload: dict | None = None,
    token: str | None = None,
    timeout: float = 5.0,
) -> tuple[int, dict | str]:
    headers = {"Content-Type": "application/json"}
    if token:
        headers["Authorization"] = f"Bearer {token}"
    request = urllib.request.Request(
        url,
        data=json.dumps(payload).encode("utf-8") if payload is not None else None,
        headers=headers,
        method="POST" if payload is not None else "GET",
    )
    try:
        with urllib.request.urlopen(request, timeout=timeout) as response:
            return response.status, json.loads(response.read().decode("utf-8"))
    except urllib.error.HTTPError as exc:
        body = exc.read().decode("utf-8", errors="ignore")
        return exc.code, body
    except urllib.error.URLError as exc:
        return 0, str(exc)


def main() -> None:
    parser = argparse.ArgumentParser(description="End-to-end smoke checks for a running PvP relay")
    parser.add_argument("--base-url", default="http://127.0.0.1:8000/api/v1")
    args = parser.parse_args()

    pvp_url = f"{args.base_url}/pvp"
    marker = uuid4().hex[:8]
    host_wallet = f"GHOST{marker}".upper()
    guest_wallet = f"GGUEST{marker}".upper()

    print("Running relay smoke tests...")

    status, created = call_json(f"{pvp_url}/create", {"walletAddress": host_wallet})
    print(f"create_status={status}")
    if status != 201 or not isinstance(created, dict):
        print(f"create_body={created}")
        return
    code = created["code"]
    host_token = created["seatToken"]

    status, joined = call_json(
        f"{pvp_url}/join",
        {"code": code.lower(), "walletAddress": guest_wallet},
    )
    print(f"join_lower_case_code_status={status}")
    if status != 200 or not isinstance(joined, dict):
        print(f"join_body={joined}")
        return
    guest_token = joined["seatToken"]

    status, _ = call_json(
        f"{pvp_url}/action",
        {"code": code, "senderRole": "host", "payload": {"round": 1}},
        token=host_token,
    )
    print(f"host_state_status={status}")

    status, _ = call_json(
        f"{pvp_url}/action",
        {"code": code, "senderRole": "guest", "payload": {"type": "call"}},
        token=guest_token,
    )
    print(f"guest_action_status={status}")

    _, first_poll = call_json(f"{pvp_url}/pending/{code}", token=host_token)
    _, second_poll = call_json(f"{pvp_url}/pending/{code}", token=host_token)
    if first_poll == {"action": {"type": "call"}} and second_poll == {"action": None}:
        print("ok=pending_action_consumed_once")
    else:
        print(f"warning=unexpected_poll_results first={first_poll} second={second_poll}")

    status, snapshot = call_json(f"{pvp_url}/state/{code}")
    if isinstance(snapshot, dict) and snapshot.get("gameState") == {"round": 1}:
        print("ok=state_snapshot_matches")
    else:
        print(f"warning=unexpected_snapshot status={status} body={snapshot}")

    status, _ = call_json(
        f"{pvp_url}/action",
        {"code": code, "senderRole": "host", "payload": {"round": 99}},
        token=guest_token,
    )
    if status == 403:
        print("ok=guest_token_cannot_write_host_state")
    else:
        print(f"warning=role_binding_not_enforced status={status}")
    print("done=true")


if __name__ == "__main__":
    main()
