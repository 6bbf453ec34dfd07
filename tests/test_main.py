from fastapi.testclient import TestClient

import database
import main


def test_health(client):
    res = client.get("/health")
    assert res.status_code == 200
    assert res.json()["status"] == "OK"
    assert res.json()["timestamp"]


def test_root(client):
    assert client.get("/").json() == {"message": "Marketplace API running"}


def test_diagnostics_lists_collections(client, db):
    db["product"].insert_one({"name": "x"})
    res = client.get("/test").json()
    assert res["connection_status"] == "Connected"
    assert "product" in res["collections"]


def test_missing_database_is_a_server_error(monkeypatch):
    monkeypatch.setattr(database, "db", None)
    client = TestClient(main.app)
    res = client.get("/products")
    assert res.status_code == 500
    assert res.json() == {"detail": "Database not configured"}
    assert client.get("/test").json()["connection_status"] == "Not Connected"


def test_unexpected_errors_are_hidden(monkeypatch, db):
    def boom(*args, **kwargs):
        raise RuntimeError("secret internals")

    monkeypatch.setattr("catalog.get_documents", boom)
    client = TestClient(main.app, raise_server_exceptions=False)
    res = client.get("/brands")
    assert res.status_code == 500
    assert res.json() == {"detail": "Server error"}
