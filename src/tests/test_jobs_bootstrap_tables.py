from __future__ import annotations

from npm_growth.jobs import bootstrap_tables


class _Store:
    def __init__(self) -> None:
        self.calls: list[str] = []

    def reset_tables(self) -> None:
        self.calls.append("reset_tables")

    def create_required_tables(self, on_table=None) -> None:
        self.calls.append("create_required_tables")
        if on_table is not None:
            for name in bootstrap_tables.EXPECTED_TABLES:
                on_table(name)

    def count_rows(self, table_name: str, where=None) -> int:
        return 2 if table_name == "packages" else 0


def test_bootstrap_tables_creates_without_reset(monkeypatch, capsys) -> None:
    fake_store = _Store()
    monkeypatch.setattr(bootstrap_tables, "LanceDBStore", lambda: fake_store)

    counts = bootstrap_tables.run()

    assert fake_store.calls == ["create_required_tables"]
    assert counts == {"packages": 2, "downloads": 0, "weekly_stats": 0, "history": 0}
    output = capsys.readouterr().out
    assert "[bootstrap] ensuring table: packages" in output
    assert "[bootstrap] ensuring table: weekly_stats" in output


def test_bootstrap_tables_reset_drops_first(monkeypatch, capsys) -> None:
    fake_store = _Store()
    monkeypatch.setattr(bootstrap_tables, "LanceDBStore", lambda: fake_store)

    bootstrap_tables.run(reset=True)

    assert fake_store.calls == ["reset_tables", "create_required_tables"]
    assert "[bootstrap] resetting tables" in capsys.readouterr().out
