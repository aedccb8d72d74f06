#!/usr/bin/env python3
"""
Script to issue an access token for the Flight-Group Booking Platform.

Users live in the identity provider; this is for local development only.
"""

import sys
import os
from uuid import UUID, uuid4

# Add the project root to the Python path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from flightgroup_booking_platform.utils.auth import ActorRole, create_access_token


def issue_token():
    """Issue a token interactively."""
    print("🔧 Flight-Group Booking Platform - Access Token")
    print("=" * 50)

    role = input("Role (ADMIN/AGENT) [AGENT]: ").strip().upper() or ActorRole.AGENT.value
    if role not in (ActorRole.ADMIN.value, ActorRole.AGENT.value):
        print(f"❌ Unsupported role: {role}")
        return

    user_id = input("User id [random]: ").strip() or str(uuid4())
    agency_id = input("Agency id [none]: ").strip() or None

    try:
        UUID(user_id)
        if agency_id:
            UUID(agency_id)
    except ValueError:
        print("❌ Ids must be UUIDs!")
        return

    claims = {"sub": user_id, "role": role}
    if agency_id:
        claims["agency_id"] = agency_id

    token = create_access_token(claims)
    print(f"\n✅ Token for {role} {user_id}:")
    print(token)


if __name__ == "__main__":
    issue_token()
