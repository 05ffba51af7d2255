#!/usr/bin/env python3
"""
Demo data generator for the contest scoreboard.
Creates tasks with answer keys, registers teams and submits noisy prediction
files through the HTTP API.
"""

import argparse
import random
import time

import requests

TEAM_NAMES = [
    "NLP Wizards",
    "Syntax Strikers",
    "Lexical Legends",
    "Token Titans",
    "Gradient Gang",
    "Vector Vikings",
    "Parse Pirates",
    "Embedding Elves",
    "Attention Seekers",
    "Byte Pair Bandits",
]

LABELS = ["4.0", "4.5", "5.0", "5.5", "6.0", "6.5", "7.0", "7.5", "8.0"]


def make_key(rows):
    """Build a category_id,content,overall_band_score answer key."""
    lines = ["category_id,content,overall_band_score"]
    for i in range(rows):
        label = random.choice(LABELS)
        lines.append(f'{i + 1},"Essay {i + 1}, sample text",{label}')
    return "\n".join(lines) + "\n"


def make_submission(key_text, accuracy):
    """Copy a key, replacing each label with a random one with probability 1 - accuracy."""
    lines = key_text.strip().split("\n")
    out = [lines[0]]
    for line in lines[1:]:
        head, label = line.rsplit(",", 1)
        if random.random() > accuracy:
            label = random.choice(LABELS)
        out.append(f"{head},{label}")
    return "\n".join(out) + "\n"


def generate_test_data(
    base_url="http://localhost:8081",
    admin_token="",
    num_tasks=5,
    rows=40,
    rounds=3,
):
    """Generate tasks, teams and submissions against a running server."""
    session = requests.Session()
    admin = {"X-Admin-Token": admin_token}

    keys = {}
    for i in range(num_tasks):
        response = session.post(
            f"{base_url}/api/tasks",
            json={"name": f"Task {chr(65 + i)}"},
            headers=admin,
        )
        response.raise_for_status()
        task_id = response.json()["id"]
        keys[task_id] = make_key(rows)
        session.put(
            f"{base_url}/api/tasks/{task_id}/key",
            data=keys[task_id].encode("utf-8"),
            headers=admin,
        ).raise_for_status()
        print(f"Created {task_id} with a {rows}-row answer key")

    team_ids = []
    for name in TEAM_NAMES:
        response = session.post(f"{base_url}/api/teams", json={"name": name})
        if response.status_code == 400:
            print(f"Skipping {name}: {response.json()['message']}")
            continue
        response.raise_for_status()
        team_ids.append(response.json()["id"])

    print(f"Registered {len(team_ids)} teams")

    total = 0
    for _ in range(rounds):
        for team_id in team_ids:
            skill = random.uniform(0.3, 0.95)
            for task_id, key_text in keys.items():
                if random.random() < 0.3:
                    continue
                response = session.post(
                    f"{base_url}/api/teams/{team_id}/tasks/{task_id}/submissions",
                    data=make_submission(key_text, skill).encode("utf-8"),
                )
                if response.ok:
                    total += 1
                else:
                    print(f"Submission rejected: {response.json()['message']}")

                # Small delay to avoid overwhelming the server
                time.sleep(0.01)

    print(f"\nTest data generation complete! {total} submissions scored")
    return total


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Contest scoreboard demo data generator")
    parser.add_argument("--url", default="http://localhost:8081")
    parser.add_argument("--admin-token", default="")
    parser.add_argument("--tasks", type=int, default=5)
    parser.add_argument("--rows", type=int, default=40)
    parser.add_argument("--rounds", type=int, default=3)
    args = parser.parse_args()

    try:
        generate_test_data(args.url, args.admin_token, args.tasks, args.rows, args.rounds)
    except requests.RequestException as e:
        print(f"Seeding failed: {e}")
