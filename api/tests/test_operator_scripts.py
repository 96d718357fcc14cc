from __future__ import annotations

import subprocess
import sys
from pathlib import Path


SCRIPT_PATH = Path(__file__).resolve().parents[2] / "scripts" / "bootstrap_account_type.py"


def _run_script(*args: str) -> str:
    completed = subprocess.run(
        [sys.executable, str(SCRIPT_PATH), *args],
        check=True,
        capture_output=True,
        text=True,
    )
    return completed.stdout


def test_bootstrap_script_sets_client_account_type_only() -> None:
    user_id = "00000000-0000-0000-0000-000000000123"
    output = _run_script("--user-id", user_id)

    assert "update auth.users" in output
    assert f"where id = '{user_id}'::uuid;" in output
    assert "jsonb_build_object('account_type', 'client')" in output
    assert "insert into documents" not in output


def test_bootstrap_script_seeds_professional_profile_for_email_target() -> None:
    output = _run_script("--email", "ravi@example.in", "--account-type", "both", "--name", "Ravi O'Neil")

    assert "jsonb_build_object('account_type', 'both')" in output
    assert "where email = 'ravi@example.in'" in output
    assert "insert into documents (collection, id, data)" in output
    assert "'name', 'Ravi O''Neil'" in output
    assert "on conflict (collection, id) do nothing;" in output


def test_init_store_prints_schema_sql() -> None:
    script = SCRIPT_PATH.parent / "init_store.py"
    completed = subprocess.run(
        [sys.executable, str(script), "--print-sql"],
        check=True,
        capture_output=True,
        text=True,
    )

    assert "create table if not exists documents" in completed.stdout
    assert "primary key (collection, id)" in completed.stdout
