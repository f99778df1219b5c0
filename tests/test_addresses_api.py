"""Integration tests for the saved address book."""

import pytest

HOME = {
    "full_name": "Nadia Rahman",
    "phone": "01700000000",
    "address": "House 12, Road 5",
    "district": "Dhaka",
    "thana": "Gulshan",
}
OFFICE = dict(HOME, address="Level 4, Tower B", thana="Banani")


@pytest.fixture()
def add_address(client, headers_for):
    def _add(user, body):
        response = client.post("/api/addresses", json=body, headers=headers_for(user))
        assert response.status_code == 201
        return response.json()["address"]
    return _add


def test_create_defaults_country(add_address, customer):
    address = add_address(customer, HOME)
    assert address["country"] == "Bangladesh"
    assert address["is_default"] is False
    assert address["user_id"] == str(customer["_id"])


def test_missing_field(client, customer, headers_for):
    body = {k: v for k, v in HOME.items() if k != "thana"}
    assert client.post("/api/addresses", json=body, headers=headers_for(customer)).status_code == 400


def test_only_one_default(client, db, add_address, customer, headers_for):
    home = add_address(customer, dict(HOME, is_default=True))
    office = add_address(customer, dict(OFFICE, is_default=True))

    listed = client.get("/api/addresses", headers=headers_for(customer)).json()
    assert [a["id"] for a in listed] == [office["id"], home["id"]]
    assert [a["is_default"] for a in listed] == [True, False]


def test_set_default(client, add_address, customer, headers_for):
    home = add_address(customer, dict(HOME, is_default=True))
    office = add_address(customer, OFFICE)

    response = client.put(f"/api/addresses/{office['id']}/default", headers=headers_for(customer))

    assert response.status_code == 200
    assert response.json()["address"]["is_default"] is True
    listed = {a["id"]: a["is_default"] for a in client.get("/api/addresses", headers=headers_for(customer)).json()}
    assert listed == {office["id"]: True, home["id"]: False}


def test_update(client, add_address, customer, headers_for):
    home = add_address(customer, HOME)
    response = client.put(f"/api/addresses/{home['id']}", json={"thana": "Dhanmondi"}, headers=headers_for(customer))
    assert response.status_code == 200
    assert response.json()["address"]["thana"] == "Dhanmondi"
    assert response.json()["address"]["district"] == "Dhaka"


def test_other_users_address_is_hidden(client, add_address, customer, other_customer, headers_for):
    home = add_address(customer, HOME)
    headers = headers_for(other_customer)
    assert client.get("/api/addresses", headers=headers).json() == []
    assert client.put(f"/api/addresses/{home['id']}", json={"thana": "X"}, headers=headers).status_code == 404
    assert client.delete(f"/api/addresses/{home['id']}", headers=headers).status_code == 404


def test_delete(client, db, add_address, customer, headers_for):
    home = add_address(customer, HOME)
    response = client.delete(f"/api/addresses/{home['id']}", headers=headers_for(customer))
    assert response.status_code == 200
    assert db["address"].count_documents({}) == 0
