from conftest import auth_headers

from homebase.rate_limiter import check_rate_limit


def test_memory_window_blocks_after_limit():
    results = [check_rate_limit("rate_limit:test:1", limit=3, window_seconds=60) for _ in range(4)]

    assert [allowed for allowed, _, _ in results] == [True, True, True, False]
    assert results[-1][1] == 3
    assert 0 < results[-1][2] <= 60


def test_keys_are_counted_separately():
    for _ in range(2):
        check_rate_limit("rate_limit:test:a", limit=2, window_seconds=60)

    assert check_rate_limit("rate_limit:test:a", limit=2, window_seconds=60)[0] is False
    assert check_rate_limit("rate_limit:test:b", limit=2, window_seconds=60)[0] is True


def test_upload_endpoint_is_rate_limited(client, contractor):
    headers = auth_headers(contractor)
    statuses = [client.post("/api/objects/upload", json={}, headers=headers).status_code for _ in range(61)]

    assert statuses[:60] == [200] * 60
    assert statuses[60] == 429
