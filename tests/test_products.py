def test_create_and_list_products(client, worker_headers):
    h = worker_headers

    r = client.post("/products", json={"name": "Цемент", "unit": "мешок", "quantity": 5}, headers=h)
    assert r.status_code == 200
    product = r.json()
    assert product["name"] == "Цемент"
    assert product["quantity"] == 5

    client.post("/products", json={"name": "Арматура", "sku": "A-12"}, headers=h)

    r2 = client.get("/products?limit=50&offset=0&sort=name_asc", headers=h)
    assert r2.status_code == 200
    data = r2.json()
    assert data["total"] == 2
    assert [p["name"] for p in data["items"]] == ["Арматура", "Цемент"]

    r3 = client.get("/products?q=A-1", headers=h)
    assert [p["name"] for p in r3.json()["items"]] == ["Арматура"]

    # 初始库存生成了一张入库单
    r4 = client.get(f"/movements?product_id={product['id']}", headers=h)
    assert r4.json()["total"] == 1
    assert r4.json()["items"][0]["type"] == "in"


def test_duplicate_product_name(client, worker_headers):
    client.post("/products", json={"name": "Краска"}, headers=worker_headers)
    r = client.post("/products", json={"name": "краска"}, headers=worker_headers)
    assert r.status_code == 409
    assert r.json()["detail"]["code"] == "PRODUCT_EXISTS"


def test_bad_sort(client, worker_headers):
    r = client.get("/products?sort=random", headers=worker_headers)
    assert r.status_code == 400
    assert r.json()["detail"]["code"] == "BAD_REQUEST"


def test_adjust_in_out(client, worker_headers, make_product):
    h = worker_headers
    pid = make_product("Саморезы", quantity=10)

    r = client.post(f"/products/{pid}/adjust", json={"type": "in", "delta": 5}, headers=h)
    assert r.status_code == 200
    assert r.json()["quantities"] == {str(pid): 15}

    r = client.post(f"/products/{pid}/adjust", json={"type": "out", "delta": 15}, headers=h)
    assert r.status_code == 200
    movement = r.json()["movement"]
    assert movement["type"] == "out"
    assert movement["items"][0]["delta"] == -15

    r = client.post(f"/products/{pid}/adjust", json={"type": "out", "delta": 1}, headers=h)
    assert r.status_code == 400
    assert r.json()["detail"]["code"] == "INSUFFICIENT_STOCK"

    assert client.get(f"/products/{pid}", headers=h).json()["quantity"] == 0


def test_adjust_validation(client, worker_headers, make_product):
    pid = make_product("Шпаклёвка", quantity=1)

    r = client.post(f"/products/{pid}/adjust", json={"type": "in", "delta": 0}, headers=worker_headers)
    assert r.status_code == 400
    assert r.json()["detail"]["code"] == "INVALID_DELTA"

    r = client.post(f"/products/{pid}/adjust", json={"type": "in", "delta": 1.5}, headers=worker_headers)
    assert r.status_code == 422
    assert r.json()["code"] == "VALIDATION_ERROR"

    r = client.post("/products/999/adjust", json={"type": "in", "delta": 1}, headers=worker_headers)
    assert r.status_code == 404
    assert r.json()["detail"]["code"] == "PRODUCT_NOT_FOUND"


def test_adjust_requires_transact_permission(client, make_user, login, make_product):
    pid = make_product("Грунтовка", quantity=3)
    make_user("viewer", "pw", permissions={"inventory:transact": False})
    h = login("viewer", "pw")

    r = client.post(f"/products/{pid}/adjust", json={"type": "out", "delta": 1}, headers=h)
    assert r.status_code == 403
    assert r.json()["detail"]["code"] == "FORBIDDEN"

    r = client.post("/products", json={"name": "Лак", "quantity": 2}, headers=h)
    assert r.status_code == 403

    # 只读接口不受影响
    assert client.get(f"/products/{pid}", headers=h).status_code == 200


def test_update_product_keeps_history_snapshot(client, worker_headers, make_product):
    h = worker_headers
    pid = make_product("Плитка", quantity=4)

    r = client.patch(f"/products/{pid}", json={"name": "Плитка настенная", "unit": "м2"}, headers=h)
    assert r.status_code == 200
    assert r.json()["name"] == "Плитка настенная"
    assert r.json()["quantity"] == 4

    items = client.get(f"/movements?product_id={pid}", headers=h).json()["items"]
    assert items[0]["items"][0]["product_name"] == "Плитка"


def test_soft_delete_hides_product(client, worker_headers, make_product):
    h = worker_headers
    pid = make_product("Старый клей", quantity=2)

    r = client.delete(f"/products/{pid}", headers=h)
    assert r.status_code == 200
    assert r.json()["purged"] is False

    names = [p["name"] for p in client.get("/products", headers=h).json()["items"]]
    assert "Старый клей" not in names
    all_names = [p["name"] for p in client.get("/products?include_deleted=true", headers=h).json()["items"]]
    assert "Старый клей" in all_names

    r = client.post(f"/products/{pid}/adjust", json={"type": "in", "delta": 1}, headers=h)
    assert r.status_code == 404


def test_purge_is_admin_only(client, worker_headers, admin_headers, make_product):
    pid = make_product("Мусор", quantity=3)

    r = client.delete(f"/products/{pid}?purge=true", headers=worker_headers)
    assert r.status_code == 403

    r = client.delete(f"/products/{pid}?purge=true", headers=admin_headers)
    assert r.status_code == 200
    assert r.json() == {"ok": True, "purged": True, "items_deleted": 1, "movements_deleted": 1}

    r = client.get(f"/products/{pid}", headers=admin_headers)
    assert r.status_code == 404
