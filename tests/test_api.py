import os
import importlib
import pytest
from fastapi.testclient import TestClient
from config import settings

pytestmark = pytest.mark.integration

HEADERS = {"X-API-Key": settings.api_key}


@pytest.fixture
def client(tmp_path, request):
    # Create a unique per-test DB and ensure api picks it up at import time
    db_file = str(tmp_path / f"api_test_{request.node.name}.db")
    os.environ["LIBRARY_DB_FILE"] = db_file

    import api as api_module
    # Reload api so its global Library() instance uses the test-specific DB
    importlib.reload(api_module)

    test_client = TestClient(api_module.app)
    try:
        yield test_client
    finally:
        api_module.library.close()
        os.environ.pop("LIBRARY_DB_FILE", None)
        if os.path.exists(db_file):
            os.remove(db_file)


def add_book(client, title="Dune", author="Frank Herbert", copies=1, **extra):
    payload = {"title": title, "author": author, "total_copies": copies, **extra}
    response = client.post("/books", headers=HEADERS, json=payload)
    assert response.status_code == 201, response.text
    return response.json()


def add_borrower(client, name="Ada Lovelace", email=None):
    response = client.post("/borrowers", headers=HEADERS, json={"name": name, "email": email})
    assert response.status_code == 201, response.text
    return response.json()


def borrow(client, book_id, borrower_id, start="2024-01-01T00:00:00", end="2024-01-15T00:00:00", **extra):
    payload = {"book_id": book_id, "borrower_id": borrower_id, "start": start, "end": end, **extra}
    return client.post("/loans", headers=HEADERS, json=payload)


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_get_books_empty(client):
    response = client.get("/books")
    assert response.status_code == 200
    assert response.json() == []


def test_add_book_with_valid_api_key(client):
    book = add_book(client, copies=2, isbn="9780441172719", publication_date="1965-08-01")
    assert book["status"] == "available"
    assert book["available_copies"] == 2
    assert book["publication_date"] == "1965-08-01"
    assert client.get(f"/books/{book['id']}").json()["title"] == "Dune"


def test_add_book_with_invalid_api_key(client):
    response = client.post("/books", headers={"X-API-Key": "invalid-key"},
                           json={"title": "Dune", "author": "Frank Herbert"})
    assert response.status_code == 403
    assert client.get("/books").json() == []


def test_add_book_invalid_field(client):
    response = client.post("/books", headers=HEADERS,
                           json={"title": "  ", "author": "Frank Herbert", "total_copies": 1})
    assert response.status_code == 400
    assert response.json()["field"] == "title"


def test_add_book_zero_copies(client):
    response = client.post("/books", headers=HEADERS,
                           json={"title": "Dune", "author": "Frank Herbert", "total_copies": 0})
    assert response.status_code == 400
    assert response.json()["field"] == "total_copies"


def test_get_missing_book(client):
    response = client.get("/books/nope")
    assert response.status_code == 404
    assert response.json()["detail"] == "Book not found."


def test_search_books(client):
    add_book(client, "Dune", "Frank Herbert")
    add_book(client, "Neuromancer", "William Gibson")
    titles = [b["title"] for b in client.get("/books", params={"title": "dune"}).json()]
    assert titles == ["Dune"]
    authors = [b["author"] for b in client.get("/books", params={"author": "gibson"}).json()]
    assert authors == ["William Gibson"]


def test_update_book(client):
    book = add_book(client)
    response = client.put(f"/books/{book['id']}", headers=HEADERS, json={"title": "Dune Messiah"})
    assert response.status_code == 200
    assert response.json()["title"] == "Dune Messiah"
    assert response.json()["author"] == "Frank Herbert"


def test_update_book_needs_a_field(client):
    book = add_book(client)
    response = client.put(f"/books/{book['id']}", headers=HEADERS, json={})
    assert response.status_code == 400


def test_update_missing_book(client):
    response = client.put("/books/ghost", headers=HEADERS, json={"title": "x"})
    assert response.status_code == 404
    assert "not found" in response.json()["detail"]


def test_update_location(client):
    book = add_book(client)
    response = client.put(f"/books/{book['id']}/location", headers=HEADERS, json={"location": "C-3"})
    assert response.json()["location"] == "C-3"


def test_change_status(client):
    book = add_book(client)
    response = client.post(f"/books/{book['id']}/status", headers=HEADERS, json={"status": "damaged"})
    assert response.status_code == 200
    assert response.json()["status"] == "damaged"

    response = client.post(f"/books/{book['id']}/status", headers=HEADERS, json={"status": "loaned"})
    assert response.status_code == 400

    response = client.post(f"/books/{book['id']}/status", headers=HEADERS, json={"status": "lost"})
    assert response.status_code == 422


def test_loan_flow(client):
    book = add_book(client)
    borrower = add_borrower(client, email="ada@example.org")

    response = borrow(client, book["id"], borrower["id"])
    assert response.status_code == 201
    loan = response.json()
    assert loan["status"] == "active"
    assert client.get(f"/books/{book['id']}").json()["status"] == "loaned"
    assert [l["id"] for l in client.get(f"/books/{book['id']}/loans").json()] == [loan["id"]]

    response = client.post(f"/loans/{loan['id']}/extend", headers=HEADERS, json={"days": 7})
    assert response.json()["committed_end"] == "2024-01-22T00:00:00"

    response = client.post(f"/loans/{loan['id']}/return", headers=HEADERS,
                           json={"returned_at": "2024-01-20T00:00:00", "notes": "ok"})
    assert response.status_code == 200
    assert response.json()["status"] == "returned"
    assert client.get(f"/books/{book['id']}").json()["available_copies"] == 1
    assert client.get(f"/borrowers/{borrower['id']}/penalties").json() == []


def test_second_borrower_refused_last_copy(client):
    book = add_book(client)
    ada = add_borrower(client, "Ada")
    grace = add_borrower(client, "Grace")
    assert borrow(client, book["id"], ada["id"]).status_code == 201

    response = borrow(client, book["id"], grace["id"])
    assert response.status_code == 400
    assert "No copies" in response.json()["detail"]


def test_pending_loan_activate_and_cancel(client):
    book = add_book(client)
    borrower = add_borrower(client)
    loan = borrow(client, book["id"], borrower["id"], activate=False).json()
    assert loan["status"] == "requested"

    response = client.post(f"/loans/{loan['id']}/activate", headers=HEADERS)
    assert response.json()["status"] == "active"

    response = client.post(f"/loans/{loan['id']}/cancel", headers=HEADERS, json={"reason": "Wrong edition"})
    assert response.json()["status"] == "cancelled"
    assert client.get(f"/books/{book['id']}").json()["available_copies"] == 1

    response = client.post(f"/loans/{loan['id']}/activate", headers=HEADERS)
    assert response.status_code == 400


def test_limit_reported_through_standing(client):
    borrower = add_borrower(client)
    for i in range(3):
        book = add_book(client, f"Book {i}")
        assert borrow(client, book["id"], borrower["id"]).status_code == 201

    standing = client.get(f"/borrowers/{borrower['id']}/standing").json()
    assert standing["active_loan_count"] == 3
    assert standing["has_active_penalty"] is False

    extra = add_book(client, "One Too Many")
    response = borrow(client, extra["id"], borrower["id"])
    assert response.status_code == 400
    assert "maximum active loans" in response.json()["detail"]
    assert len(client.get(f"/borrowers/{borrower['id']}/loans").json()) == 3


def test_penalty_flow(client):
    book = add_book(client)
    borrower = add_borrower(client)
    response = client.post("/penalties", headers=HEADERS, json={
        "borrower_id": borrower["id"],
        "amount": "5.00",
        "start": "2024-01-01T00:00:00",
        "end": "2024-01-08T00:00:00",
        "reason": "Late return",
    })
    assert response.status_code == 201
    penalty = response.json()
    assert penalty["active"] is True

    response = borrow(client, book["id"], borrower["id"], start="2024-01-05T00:00:00", end="2024-01-19T00:00:00")
    assert response.status_code == 400
    assert "penalty" in response.json()["detail"]

    response = borrow(client, book["id"], borrower["id"], start="2024-01-09T00:00:00", end="2024-01-23T00:00:00")
    assert response.status_code == 201
    assert client.get(f"/penalties/{penalty['id']}").json()["active"] is False


def test_close_penalty(client):
    borrower = add_borrower(client)
    penalty = client.post("/penalties", headers=HEADERS, json={
        "borrower_id": borrower["id"],
        "start": "2024-01-01T00:00:00",
        "end": "2024-02-01T00:00:00",
        "reason": "Lost card",
    }).json()

    response = client.post(f"/penalties/{penalty['id']}/close", headers=HEADERS, json={"reason": " "})
    assert response.status_code == 400
    assert response.json()["field"] == "reason"

    response = client.post(f"/penalties/{penalty['id']}/close", headers=HEADERS, json={"reason": "Card found"})
    assert response.json()["active"] is False
    assert client.get(f"/borrowers/{borrower['id']}/penalties", params={"active_only": True}).json() == []


def test_overdue_sweeps(client):
    book = add_book(client)
    borrower = add_borrower(client)
    loan = borrow(client, book["id"], borrower["id"]).json()

    overdue = client.get("/loans/overdue", params={"as_of": "2024-01-20T00:00:00"}).json()
    assert [l["id"] for l in overdue] == [loan["id"]]

    response = client.post("/loans/mark-overdue", headers=HEADERS, json={"now": "2024-01-20T00:00:00"})
    assert [l["status"] for l in response.json()] == ["overdue"]
    assert client.get(f"/loans/{loan['id']}").json()["status"] == "overdue"

    response = client.post("/penalties/expire", headers=HEADERS, json={"now": "2024-01-20T00:00:00"})
    assert response.json() == []


def test_unknown_ids(client):
    assert client.get("/loans/ghost").status_code == 404
    assert client.get("/penalties/ghost").status_code == 404
    assert client.get("/borrowers/ghost").status_code == 404
    assert client.get("/borrowers/ghost/standing").status_code == 404
    assert client.post("/loans/ghost/activate", headers=HEADERS).status_code == 404


def test_stats(client):
    add_book(client, copies=2)
    add_borrower(client)
    stats = client.get("/stats").json()
    assert stats["total_books"] == 1
    assert stats["total_copies"] == 2
    assert stats["borrowers"] == 1


def test_standing_after_penalty_window(client):
    borrower = add_borrower(client)
    client.post("/penalties", headers=HEADERS, json={
        "borrower_id": borrower["id"],
        "start": "2020-01-01T00:00:00",
        "end": "2020-01-02T00:00:00",
        "reason": "Late return",
    })
    during = client.get(f"/borrowers/{borrower['id']}/standing", params={"as_of": "2020-01-01T12:00:00"})
    assert during.json()["has_active_penalty"] is True
    after = client.get(f"/borrowers/{borrower['id']}/standing")
    assert after.json()["has_active_penalty"] is False
