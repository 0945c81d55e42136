#!/usr/bin/env python3
"""
Command-line client for the helpdesk API.

Usage:
    helpdesk login [--email EMAIL] [--password PASSWORD] [--code CODE] [--api-url URL]
    helpdesk logout
    helpdesk whoami
    helpdesk ticket create --title T --description D [--priority P] [--tag NAME ...]
    helpdesk ticket view TICKET_ID
    helpdesk ticket list [--status S] [--priority P] [--mine] [--page N] [--limit N]
    helpdesk ticket assign TICKET_ID AGENT_ID
    helpdesk ticket status TICKET_ID STATUS
    helpdesk ticket priority TICKET_ID PRIORITY
    helpdesk ticket close TICKET_ID --notes NOTES

The API URL and tokens are kept in ~/.helpdesk/config.json
(override the directory with HELPDESK_CONFIG_DIR).
"""

from __future__ import annotations

import argparse
import getpass
import json
import os
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import requests
from dotenv import load_dotenv

DEFAULT_API_URL = "http://localhost:8000"
CONFIG_FILE_NAME = "config.json"

# Calls that open or renew a session; a 401 from these is final
NO_REFRESH_PATHS = frozenset({
    "/api/auth/login",
    "/api/auth/register",
    "/api/auth/refresh",
    "/api/auth/logout",
    "/api/auth/2fa/verify",
})

BOLD = "\033[1m"
RESET = "\033[0m"


class ApiError(Exception):
    """An error response from the API, carrying the payload's code and message."""

    def __init__(self, status_code: int, code: str, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message


# ----------------------------- Config ----------------------------------
def config_dir() -> Path:
    return Path(os.getenv("HELPDESK_CONFIG_DIR", str(Path.home() / ".helpdesk")))


def config_path() -> Path:
    return config_dir() / CONFIG_FILE_NAME


def load_config() -> Dict[str, Any]:
    path = config_path()
    if not path.exists():
        return {}
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return {}


def save_config(config: Dict[str, Any]) -> None:
    path = config_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(config, indent=2), encoding="utf-8")
    try:
        os.chmod(path, 0o600)
    except OSError:
        # Best effort on filesystems without POSIX permissions
        pass


def clear_config() -> None:
    path = config_path()
    if path.exists():
        path.unlink()


# ----------------------------- Client ----------------------------------
class HelpdeskClient:
    def __init__(self, api_url: str = DEFAULT_API_URL, access_token: Optional[str] = None, refresh_token: Optional[str] = None, session: Any = None):
        self.api_url = api_url.rstrip("/")
        self.access_token = access_token
        self.refresh_token = refresh_token
        self.session = session if session is not None else requests.Session()
        self.tokens_refreshed = False

    def _headers(self) -> Dict[str, str]:
        if not self.access_token:
            return {}
        return {"Authorization": f"Bearer {self.access_token}"}

    def _send(self, method: str, path: str, **kwargs: Any):
        return self.session.request(method, f"{self.api_url}{path}", headers=self._headers(), **kwargs)

    def request(self, method: str, path: str, **kwargs: Any) -> Any:
        """Send a request and return the decoded JSON body (None for empty bodies).

        An expired access token is refreshed once with the stored refresh token.
        """
        response = self._send(method, path, **kwargs)
        if response.status_code == 401 and self.refresh_token and path not in NO_REFRESH_PATHS:
            if self._refresh():
                response = self._send(method, path, **kwargs)
        return self._decode(response)

    @staticmethod
    def _decode(response) -> Any:
        if response.status_code >= 400:
            code, message = "http_error", f"HTTP {response.status_code}"
            try:
                error = response.json().get("error") or {}
                code = error.get("code", code)
                message = error.get("message", message)
            except ValueError:
                pass
            raise ApiError(response.status_code, code, message)
        if not response.content:
            return None
        return response.json()

    def _refresh(self) -> bool:
        response = self.session.request("POST", f"{self.api_url}/api/auth/refresh", json={"refresh_token": self.refresh_token})
        if response.status_code != 200:
            return False
        data = response.json()
        self.access_token = data["access_token"]
        self.refresh_token = data["refresh_token"]
        self.tokens_refreshed = True
        return True

    # Auth
    def login(self, username_or_email: str, password: str) -> Dict[str, Any]:
        """Log in. With two-factor auth on, returns the challenge instead of tokens."""
        data = self.request("POST", "/api/auth/login", json={"username_or_email": username_or_email, "password": password})
        if not data.get("requires_2fa"):
            self._store_tokens(data)
        return data

    def verify_two_factor(self, challenge_token: str, code: str) -> Dict[str, Any]:
        data = self.request("POST", "/api/auth/2fa/verify", json={"challenge_token": challenge_token, "code": code})
        self._store_tokens(data)
        return data

    def _store_tokens(self, data: Dict[str, Any]) -> None:
        self.access_token = data["access_token"]
        self.refresh_token = data["refresh_token"]

    def logout(self) -> None:
        if not self.refresh_token:
            return
        response = self._send("POST", "/api/auth/logout", json={"refresh_token": self.refresh_token})
        # Refreshing rotates the token, so the retry revokes the replacement
        if response.status_code == 401 and self._refresh():
            response = self._send("POST", "/api/auth/logout", json={"refresh_token": self.refresh_token})
        self._decode(response)

    def me(self) -> Dict[str, Any]:
        return self.request("GET", "/api/auth/me")

    # Tickets
    def create_ticket(self, title: str, description: str, priority: str = "medium", tags: Optional[List[str]] = None) -> Dict[str, Any]:
        return self.request("POST", "/api/tickets", json={"title": title, "description": description, "priority": priority, "tags": tags or []})

    def get_ticket(self, ticket_id: str) -> Dict[str, Any]:
        return self.request("GET", f"/api/tickets/{ticket_id}/details")

    def list_tickets(self, **filters: Any) -> Dict[str, Any]:
        params = {k: v for k, v in filters.items() if v is not None}
        return self.request("GET", "/api/tickets", params=params)

    def assign_ticket(self, ticket_id: str, agent_id: int) -> Dict[str, Any]:
        return self.request("PUT", f"/api/tickets/{ticket_id}/assign", json={"agent_id": agent_id})

    def update_status(self, ticket_id: str, status: str) -> Dict[str, Any]:
        return self.request("PUT", f"/api/tickets/{ticket_id}/status", json={"status": status})

    def update_priority(self, ticket_id: str, priority: str) -> Dict[str, Any]:
        return self.request("PUT", f"/api/tickets/{ticket_id}/priority", json={"priority": priority})

    def close_ticket(self, ticket_id: str, notes: str) -> Dict[str, Any]:
        return self.request("POST", f"/api/tickets/{ticket_id}/close", json={"resolution_notes": notes})


# ----------------------------- Output ----------------------------------
def format_ticket_line(ticket: Dict[str, Any]) -> str:
    return f"{ticket['ticket_number']:<10} {ticket['status']:<12} {ticket['priority']:<9} {ticket['title']}"


def print_ticket(ticket: Dict[str, Any]) -> None:
    print(f"{BOLD}{ticket['ticket_number']}: {ticket['title']}{RESET}")
    print(f"ID:        {ticket['id']}")
    print(f"Status:    {ticket['status']}")
    print(f"Priority:  {ticket['priority']}")
    print(f"Assignee:  {ticket.get('assigned_to_id') or 'unassigned'}")
    print(f"Version:   {ticket['version']}")
    if ticket.get("tags"):
        print(f"Tags:      {', '.join(ticket['tags'])}")
    print()
    print(ticket["description"])
    if ticket.get("resolution_notes"):
        print(f"\nResolution: {ticket['resolution_notes']}")
    comments = ticket.get("comments") or []
    if comments:
        print(f"\nComments ({len(comments)}):")
        for comment in comments:
            marker = " [internal]" if comment.get("is_internal") else ""
            print(f"  - {comment['created_at']}{marker}: {comment['content']}")


# ----------------------------- Commands --------------------------------
def _client(args: argparse.Namespace, config: Dict[str, Any], session: Any = None) -> HelpdeskClient:
    api_url = args.api_url or config.get("api_url") or os.getenv("HELPDESK_API_URL", DEFAULT_API_URL)
    return HelpdeskClient(api_url, config.get("access_token"), config.get("refresh_token"), session=session)


def _require_login(config: Dict[str, Any]) -> None:
    if not config.get("access_token"):
        raise ApiError(401, "not_logged_in", 'Not authenticated. Run "helpdesk login" first.')


def cmd_login(args: argparse.Namespace, client: HelpdeskClient, config: Dict[str, Any]) -> int:
    email = args.email or input("Email or username: ").strip()
    password = args.password or getpass.getpass("Password: ")
    data = client.login(email, password)
    if data.get("requires_2fa"):
        code = args.code or input("Authentication code: ").strip()
        data = client.verify_two_factor(data["challenge_token"], code)
    save_config({
        "api_url": client.api_url,
        "access_token": data["access_token"],
        "refresh_token": data["refresh_token"],
        "user": data["user"],
    })
    user = data["user"]
    print(f"Logged in as {user['first_name']} {user['last_name']} ({user['role']})")
    return 0


def cmd_logout(args: argparse.Namespace, client: HelpdeskClient, config: Dict[str, Any]) -> int:
    if config.get("access_token"):
        try:
            client.logout()
        except ApiError as exc:
            # The local session is dropped either way
            print(f"Warning: {exc.message}", file=sys.stderr)
    clear_config()
    print("Logged out")
    return 0


def cmd_whoami(args: argparse.Namespace, client: HelpdeskClient, config: Dict[str, Any]) -> int:
    _require_login(config)
    user = client.me()
    print(f"{user['first_name']} {user['last_name']} <{user['email']}> ({user['role']})")
    return 0


def cmd_ticket(args: argparse.Namespace, client: HelpdeskClient, config: Dict[str, Any]) -> int:
    _require_login(config)
    action = args.ticket_command

    if action == "create":
        ticket = client.create_ticket(args.title, args.description, args.priority, args.tag)
        print(f"Created {ticket['ticket_number']} ({ticket['id']})")
    elif action == "view":
        print_ticket(client.get_ticket(args.ticket_id))
    elif action == "list":
        assigned = None
        if args.mine:
            assigned = (config.get("user") or {}).get("id")
        result = client.list_tickets(status=args.status, priority=args.priority, assigned_to_id=assigned, page=args.page, limit=args.limit)
        tickets = result.get("data", [])
        if not tickets:
            print("No tickets found")
        for ticket in tickets:
            print(format_ticket_line(ticket))
        pagination = result.get("pagination") or {}
        if pagination:
            print(f"\nPage {pagination['page']} of {pagination['totalPages']} ({pagination['total']} tickets)")
    elif action == "assign":
        ticket = client.assign_ticket(args.ticket_id, args.agent_id)
        print(f"{ticket['ticket_number']} assigned to user {ticket['assigned_to_id']} (status {ticket['status']})")
    elif action == "status":
        ticket = client.update_status(args.ticket_id, args.status)
        print(f"{ticket['ticket_number']} is now {ticket['status']}")
    elif action == "priority":
        ticket = client.update_priority(args.ticket_id, args.priority)
        print(f"{ticket['ticket_number']} priority is now {ticket['priority']}")
    elif action == "close":
        ticket = client.close_ticket(args.ticket_id, args.notes)
        print(f"{ticket['ticket_number']} closed")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="helpdesk",
        description="Command-line client for the helpdesk API",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--api-url", default=None, help=f"API base URL (default: $HELPDESK_API_URL or {DEFAULT_API_URL})")
    sub = parser.add_subparsers(dest="command", required=True)

    login = sub.add_parser("login", help="Log in and store the tokens")
    login.add_argument("--email", help="Email or username")
    login.add_argument("--password", help="Password (prompted when omitted)")
    login.add_argument("--code", help="Authenticator or backup code when two-factor auth is on")
    login.set_defaults(func=cmd_login)

    sub.add_parser("logout", help="Revoke the refresh token and forget the session").set_defaults(func=cmd_logout)
    sub.add_parser("whoami", help="Show the logged in user").set_defaults(func=cmd_whoami)

    ticket = sub.add_parser("ticket", help="Work with tickets")
    ticket.set_defaults(func=cmd_ticket)
    tsub = ticket.add_subparsers(dest="ticket_command", required=True)

    create = tsub.add_parser("create", help="Open a ticket")
    create.add_argument("--title", required=True)
    create.add_argument("--description", required=True)
    create.add_argument("--priority", default="medium", choices=["low", "medium", "high", "critical"])
    create.add_argument("--tag", action="append", default=[], help="Tag name (repeatable)")

    view = tsub.add_parser("view", help="Show a ticket with its comments")
    view.add_argument("ticket_id")

    listing = tsub.add_parser("list", help="List tickets")
    listing.add_argument("--status")
    listing.add_argument("--priority")
    listing.add_argument("--mine", action="store_true", help="Only tickets assigned to me")
    listing.add_argument("--page", type=int, default=1)
    listing.add_argument("--limit", type=int, default=20)

    assign = tsub.add_parser("assign", help="Assign a ticket to an agent")
    assign.add_argument("ticket_id")
    assign.add_argument("agent_id", type=int)

    status = tsub.add_parser("status", help="Change a ticket's status")
    status.add_argument("ticket_id")
    status.add_argument("status", choices=["open", "in_progress", "resolved", "cancelled"])

    priority = tsub.add_parser("priority", help="Change a ticket's priority")
    priority.add_argument("ticket_id")
    priority.add_argument("priority", choices=["low", "medium", "high", "critical"])

    close = tsub.add_parser("close", help="Close a ticket with resolution notes")
    close.add_argument("ticket_id")
    close.add_argument("--notes", required=True, help="Resolution notes (at least 10 characters)")

    return parser


def main(argv: Optional[List[str]] = None, session: Any = None) -> int:
    load_dotenv()
    args = build_parser().parse_args(argv)
    config = load_config()
    client = _client(args, config, session=session)

    try:
        code = args.func(args, client, config)
    except ApiError as exc:
        print(f"Error: {exc.message}", file=sys.stderr)
        return 1
    except requests.RequestException as exc:
        print(f"Error: could not reach {client.api_url}: {exc}", file=sys.stderr)
        return 1

    if client.tokens_refreshed and config_path().exists():
        config.update({"access_token": client.access_token, "refresh_token": client.refresh_token})
        save_config(config)
    return code


if __name__ == "__main__":
    sys.exit(main())
