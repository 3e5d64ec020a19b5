#!/usr/bin/env python3
from getpass import getpass

from coach_app.exceptions import AuthenticationError
from coach_app.gateway import COACH_DATA_DIR
from coach_app.storage import LocalGateway


def main():
    gateway = LocalGateway(COACH_DATA_DIR)

    email = input("Email: ").strip().lower()
    if not email:
        print("Email cannot be empty.")
        return

    name = input("Display name (default: User): ").strip() or "User"

    password = getpass("Password: ")
    confirm = getpass("Confirm password: ")

    if password != confirm:
        print("Passwords do not match.")
        return

    if not password:
        print("Password cannot be empty.")
        return

    try:
        user = gateway.add_user(email, password, name)
    except AuthenticationError as e:
        print(e)
        return

    gateway.ensure_profile(user["id"], name)
    print(f"User '{email}' added with id {user['id']}.")


if __name__ == "__main__":
    main()
