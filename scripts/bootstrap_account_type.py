#!/usr/bin/env python3
"""Emit deterministic SQL for Supabase account-type bootstrap."""

from __future__ import annotations

import argparse

PROFESSIONAL_ACCOUNT_TYPES = {"professional", "both"}


def _quote_sql(value: str) -> str:
    escaped = value.replace("'", "''")
    return f"'{escaped}'"


def render_sql(*, account_type: str, user_id: str | None, email: str | None, name: str) -> str:
    account_type_value = _quote_sql(account_type)

    if user_id:
        target_where = f"id = {_quote_sql(user_id)}::uuid"
    else:
        assert email is not None
        target_where = f"email = {_quote_sql(email)}"

    sql = f"""-- Supabase account type bootstrap SQL
-- Run this in the Supabase SQL editor (or equivalent privileged Postgres session).

update auth.users
set raw_app_meta_data = coalesce(raw_app_meta_data, '{{}}'::jsonb) || jsonb_build_object('account_type', {account_type_value})
where {target_where};
"""
    if account_type not in PROFESSIONAL_ACCOUNT_TYPES:
        return sql

    # Mirrors the empty profile the API creates lazily on first edit.
    return (
        sql
        + f"""
insert into documents (collection, id, data)
select
  'professionals',
  id::text,
  jsonb_build_object(
    'user_id', id::text,
    'name', {_quote_sql(name)},
    'profession', '',
    'location', '',
    'hourly_rate', '',
    'skills', '[]'::jsonb,
    'description', '',
    'response_time', 'Within 24 hours',
    'languages', '["English", "Nagamese"]'::jsonb,
    'verified', false,
    'rating', 0,
    'reviews', 0,
    'rating_total', 0,
    'completed_jobs', 0,
    'created_at', to_jsonb(now()),
    'updated_at', to_jsonb(now())
  )
from auth.users
where {target_where}
on conflict (collection, id) do nothing;
"""
    )


def main() -> None:
    parser = argparse.ArgumentParser(description="Emit SQL to bootstrap a Supabase account type.")
    parser.add_argument(
        "--account-type",
        choices=["client", "professional", "both"],
        default="client",
        help="Account type to assign in auth.users.raw_app_meta_data.account_type",
    )
    identity_group = parser.add_mutually_exclusive_group(required=True)
    identity_group.add_argument("--user-id", help="Supabase auth.users id (UUID)")
    identity_group.add_argument("--email", help="Supabase auth.users email")
    parser.add_argument(
        "--name",
        default="",
        help="Display name stored on the professional profile",
    )
    args = parser.parse_args()

    print(
        render_sql(
            account_type=args.account_type,
            user_id=args.user_id,
            email=args.email,
            name=args.name,
        )
    )


if __name__ == "__main__":
    main()
