from fastapi.testclient import TestClient

from forum_portal.app import create_app


def test_ヘルスチェックが成功する() -> None:
    """`/healthz` がローカル環境で 200 / 期待 JSON を返すことを検証する。"""

    client = TestClient(create_app())

    response = client.get("/healthz")

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "env": "local"}


def test_ヘルスチェックは_azure_の資格情報なしでも動く() -> None:
    """サービスは遅延生成されるため、資格情報が無くても起動できる。"""

    app = create_app()
    client = TestClient(app)

    assert client.get("/healthz").status_code == 200
    assert app.state.forum_service is None
