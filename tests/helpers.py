"""Request helpers shared by the endpoint tests."""
from httpx import AsyncClient


def auth(token: str) -> dict:
    return {"Authorization": f"Token {token}"}


async def register(client: AsyncClient, username: str, password: str = "secret123") -> dict:
    """Register *username* (email derived from it) and return the user payload."""
    resp = await client.post("/api/users", json={"user": {
        "username": username,
        "email": f"{username}@example.com",
        "password": password,
    }})
    assert resp.status_code == 201, resp.text
    return resp.json()["user"]


async def create_article(
    client: AsyncClient, token: str, title: str, tags: list[str] | None = None, **fields
) -> dict:
    payload = {
        "title": title,
        "description": fields.get("description", f"About {title}"),
        "body": fields.get("body", f"Body of {title}"),
        "tagList": tags or [],
    }
    resp = await client.post("/api/articles", json={"article": payload}, headers=auth(token))
    assert resp.status_code == 201, resp.text
    return resp.json()["article"]
