"""Demo: author an assessment, then take it as a participant.

Run with:
    python scripts/demo_exam_flow.py

Uses the in-memory repo (no DATABASE_URL needed).
"""

from __future__ import annotations

import time

from fastapi.testclient import TestClient

from app.main import app
from app.services import token_service

ADMIN = "demo-admin"
PARTICIPANT = "demo-participant"


def _headers(sub: str, roles: list[str]) -> dict[str, str]:
    token = token_service.create_access_token(sub=sub, roles=roles)
    return {"Authorization": f"Bearer {token}"}


def main() -> None:
    client = TestClient(app)
    admin = _headers(ADMIN, ["admin"])
    participant = _headers(PARTICIPANT, ["user"])
    now = int(time.time())

    # ── Step 1: create the assessment ───────────────────────────────
    r = client.post(
        "/v1/assessments",
        json={"title": "Demo quiz", "starts_at": now - 1, "ends_at": now + 600},
        headers=admin,
    )
    assessment_id = r.json()["id"]
    print(f"1. POST /v1/assessments             → {r.status_code}")

    # ── Step 2: add questions and publish ───────────────────────────
    r = client.post(
        f"/v1/assessments/{assessment_id}/questions",
        json={
            "questions": [
                {
                    "prompt": "Capital of France?",
                    "type": "single_choice",
                    "negative_marks": -1,
                    "options": [
                        {"label": "Paris", "is_correct": True, "points": 2},
                        {"label": "Lyon"},
                    ],
                },
                {
                    "prompt": "Prime numbers?",
                    "type": "multiple_choice",
                    "negative_marks": -2,
                    "options": [
                        {"label": "2", "is_correct": True, "points": 1},
                        {"label": "3", "is_correct": True, "points": 1},
                        {"label": "4"},
                    ],
                },
            ]
        },
        headers=admin,
    )
    q1, q2 = r.json()
    print(f"2. POST .../questions               → {r.status_code}")
    r = client.post(f"/v1/assessments/{assessment_id}/publish", headers=admin)
    print(f"   POST .../publish                 → {r.status_code}")

    # ── Step 3: assign the participant ──────────────────────────────
    r = client.post(
        f"/v1/assessments/{assessment_id}/participants",
        json={"participant_id": PARTICIPANT},
        headers=admin,
    )
    attempt_id = r.json()["id"]
    print(f"3. POST .../participants            → {r.status_code}  attempt={attempt_id}")

    # ── Step 4: start, answer, change an answer ─────────────────────
    r = client.post(f"/v1/attempts/{attempt_id}/start", headers=participant)
    print(f"4. POST /v1/attempts/.../start      → {r.status_code}  {r.json()['status']}")
    for question, picks in ((q1, [0]), (q2, [0, 2]), (q2, [0, 1])):
        r = client.put(
            f"/v1/attempts/{attempt_id}/answers",
            json={
                "question_id": question["id"],
                "option_ids": [question["options"][i]["id"] for i in picks],
            },
            headers=participant,
        )
        print(f"   PUT  .../answers {picks!s:<14}  → {r.status_code}")

    # ── Step 5: finalize, then try to change an answer ──────────────
    r = client.post(f"/v1/attempts/{attempt_id}/finalize", headers=participant)
    print(f"5. POST .../finalize                → {r.status_code}  {r.json()}")
    r = client.put(
        f"/v1/attempts/{attempt_id}/answers",
        json={"question_id": q1["id"], "option_ids": []},
        headers=participant,
    )
    print(f"   PUT  .../answers (after)         → {r.status_code}  (rejected)")

    r = client.get(f"/v1/attempts/{attempt_id}/score", headers=participant)
    print(f"6. GET  .../score                   → {r.status_code}  {r.json()}")


if __name__ == "__main__":
    main()
