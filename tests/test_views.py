from repodash.views import MenuRow, RowKind, ViewRegistry


class Sink:
    def __init__(self) -> None:
        self.renders: list[list[MenuRow]] = []

    def render(self, rows: list[MenuRow]) -> None:
        self.renders.append(rows)


def test_render_only_while_live() -> None:
    registry: ViewRegistry[str] = ViewRegistry()
    sink = Sink()
    entry = registry.register("v", "ctx", sink)

    assert registry.render(entry, [MenuRow.message("Loading…")])
    registry.close("v")
    assert not registry.render(entry, [MenuRow.message("late")])
    assert registry.get("v") is None
    assert [rows[0].title for rows in sink.renders] == ["Loading…"]


def test_reregistration_supersedes_old_entry() -> None:
    """Verifies that work for an older registration cannot render into the new one."""
    registry: ViewRegistry[str] = ViewRegistry()
    old = registry.register("v", "ctx", Sink())
    new = registry.register("v", "ctx", Sink())

    assert new.generation > old.generation
    assert not registry.is_live(old)
    assert registry.is_live(new)


def test_prune_and_live_entries() -> None:
    registry: ViewRegistry[str] = ViewRegistry()
    registry.register("a", "ctx", Sink())
    registry.register("b", "ctx", Sink())
    registry.close("a")

    assert [e.view_id for e in registry.live_entries()] == ["b"]
    assert registry.prune() == 1
    assert registry.prune() == 0

    registry.clear()
    assert registry.live_entries() == []


def test_row_factories() -> None:
    assert MenuRow.message("x").kind is RowKind.MESSAGE
    assert MenuRow.action("More", payload=[1]).payload == [1]
    assert MenuRow.separator().kind is RowKind.SEPARATOR
