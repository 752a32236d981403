"""Tests for the transitive dependency walk."""

import asyncio

import pytest
from conftest import FakeRegistry, make_document

from guardpkg.analyzers.dependencies import NEUTRAL_SCORE, DependencyRiskWalker
from guardpkg.errors import NetworkError
from guardpkg.models.schemas import (
    DependencyStatus,
    DependencyType,
    PackageMetadata,
    PackageRef,
    RiskScore,
)


class Assessor:
    """Records assessed packages and returns a fixed score."""

    def __init__(self, score: int = 90, fail: set[str] | None = None, delay: float = 0.0):
        self.score = score
        self.fail = fail or set()
        self.delay = delay
        self.calls: list[tuple[str, str]] = []

    async def __call__(self, metadata: PackageMetadata) -> RiskScore:
        self.calls.append((metadata.name, metadata.version))
        if self.delay:
            await asyncio.sleep(self.delay)
        if metadata.name in self.fail:
            raise NetworkError(f"https://registry.test/{metadata.name}", "down")
        return RiskScore(score=self.score)


def _root(**deps: str) -> PackageMetadata:
    return PackageMetadata(name="root", version="1.0.0", dependencies=deps)


class TestDependencyRiskWalker:
    """Test graph traversal and failure handling."""

    @pytest.mark.asyncio
    async def test_cycle_terminates(self):
        """Test that A -> B -> A visits each package once."""
        registry = FakeRegistry({
            "a": make_document("a", {"1.0.0": {"b": "^1.0.0"}}),
            "b": make_document("b", {"1.0.0": {"a": "^1.0.0"}}),
        })
        assess = Assessor()
        walker = DependencyRiskWalker(registry, assess, max_depth=10)

        entries = await walker.walk(_root(a="^1.0.0"))

        assert [(e.name, e.depth) for e in entries] == [("a", 1), ("b", 2)]
        assert sorted(assess.calls) == [("a", "1.0.0"), ("b", "1.0.0")]

    @pytest.mark.asyncio
    async def test_depth_limit(self):
        """Test that a chain longer than the limit stops at max_depth."""
        max_depth = 3
        chain = [f"pkg{i}" for i in range(max_depth + 5)]
        documents = {}
        for current, following in zip(chain, chain[1:] + [None]):
            deps = {following: "1.0.0"} if following else {}
            documents[current] = make_document(current, {"1.0.0": deps})

        walker = DependencyRiskWalker(FakeRegistry(documents), Assessor(), max_depth=max_depth)
        entries = await walker.walk(_root(pkg0="1.0.0"))

        assert [e.name for e in entries] == chain[:max_depth]
        assert max(e.depth for e in entries) == max_depth

    @pytest.mark.asyncio
    async def test_depth_override(self):
        registry = FakeRegistry({
            "a": make_document("a", {"1.0.0": {"b": "1.0.0"}}),
            "b": make_document("b", {"1.0.0": {}}),
        })
        walker = DependencyRiskWalker(registry, Assessor(), max_depth=3)
        entries = await walker.walk(_root(a="1.0.0"), max_depth=1)
        assert [e.name for e in entries] == ["a"]

    @pytest.mark.asyncio
    async def test_diamond_visits_shared_dependency_once(self):
        registry = FakeRegistry({
            "x": make_document("x", {"1.0.0": {"z": "^2.0.0"}}),
            "y": make_document("y", {"1.0.0": {"z": "~2.1.0"}}),
            "z": make_document("z", {"2.0.0": {}, "2.1.3": {}}),
        })
        assess = Assessor()
        walker = DependencyRiskWalker(registry, assess)

        entries = await walker.walk(_root(x="1.0.0", y="1.0.0"))

        assert [(e.name, e.version) for e in entries] == [
            ("x", "1.0.0"),
            ("y", "1.0.0"),
            ("z", "2.1.3"),
        ]
        assert assess.calls.count(("z", "2.1.3")) == 1
        assert registry.fetch_calls.count("z") == 1
        assert entries[2].parent == "x@1.0.0"

    @pytest.mark.asyncio
    async def test_missing_dependency(self):
        """Test that an unknown package yields a missing entry with the requested spec."""
        walker = DependencyRiskWalker(FakeRegistry({}), Assessor())

        entries = await walker.walk(_root(ghost="^1.0.0"))

        assert len(entries) == 1
        entry = entries[0]
        assert entry.status == DependencyStatus.MISSING
        assert entry.version == "^1.0.0"
        assert entry.score is None
        assert "ghost" in entry.error

    @pytest.mark.asyncio
    async def test_unsatisfiable_range_is_missing(self):
        registry = FakeRegistry({"a": make_document("a", {"1.0.0": {}})})
        entries = await DependencyRiskWalker(registry, Assessor()).walk(_root(a="^5.0.0"))
        assert entries[0].status == DependencyStatus.MISSING

    @pytest.mark.asyncio
    async def test_failed_assessment_uses_neutral_score(self):
        registry = FakeRegistry({
            "good": make_document("good", {"1.0.0": {}}),
            "flaky": make_document("flaky", {"1.0.0": {}}),
        })
        walker = DependencyRiskWalker(registry, Assessor(fail={"flaky"}))

        entries = {e.name: e for e in await walker.walk(_root(good="1.0.0", flaky="1.0.0"))}

        assert entries["good"].score == 90
        assert entries["good"].status == DependencyStatus.SCORED
        assert entries["flaky"].score == NEUTRAL_SCORE
        assert entries["flaky"].status == DependencyStatus.DEFAULT

    @pytest.mark.asyncio
    async def test_assessment_timeout_uses_neutral_score(self):
        registry = FakeRegistry({"slow": make_document("slow", {"1.0.0": {}})})
        walker = DependencyRiskWalker(registry, Assessor(delay=1.0), timeout=0.01)

        entries = await walker.walk(_root(slow="1.0.0"))

        assert entries[0].status == DependencyStatus.DEFAULT
        assert entries[0].score == NEUTRAL_SCORE

    @pytest.mark.asyncio
    async def test_node_limit(self):
        names = [f"dep{i:02d}" for i in range(10)]
        registry = FakeRegistry({n: make_document(n, {"1.0.0": {}}) for n in names})
        assess = Assessor()
        walker = DependencyRiskWalker(registry, assess, max_nodes=4)

        entries = await walker.walk(_root(**{n: "1.0.0" for n in names}))

        assert [e.name for e in entries] == names[:4]
        assert len(assess.calls) == 4

    @pytest.mark.asyncio
    async def test_dev_and_peer_dependencies_are_walked(self):
        registry = FakeRegistry({
            "jest": make_document("jest", {"29.0.0": {}}),
            "react": make_document("react", {"18.2.0": {}}),
        })
        root = PackageMetadata(
            name="root",
            version="1.0.0",
            dev_dependencies={"jest": "^29.0.0"},
            peer_dependencies={"react": ">=17"},
        )
        entries = await DependencyRiskWalker(registry, Assessor()).walk(root)
        assert [e.name for e in entries] == ["jest", "react"]
        assert [e.dependency_type for e in entries] == [DependencyType.DEV, DependencyType.PEER]

    @pytest.mark.asyncio
    async def test_no_dependencies(self):
        walker = DependencyRiskWalker(FakeRegistry({}), Assessor())
        assert await walker.walk(_root()) == []

    @pytest.mark.asyncio
    async def test_walk_from_reference(self):
        """Test that a bare reference is resolved before walking."""
        registry = FakeRegistry({
            "root": make_document("root", {"1.0.0": {"x": "1.0.0", "y": "1.0.0"}}),
            "x": make_document("x", {"1.0.0": {"z": "1.0.0"}}),
            "y": make_document("y", {"1.0.0": {"z": "1.0.0"}}),
            "z": make_document("z", {"1.0.0": {}}),
        })

        entries = await DependencyRiskWalker(registry, Assessor()).walk(PackageRef(name="root", version="latest"))

        assert [e.name for e in entries] == ["x", "y", "z"]

    @pytest.mark.asyncio
    async def test_entries_record_type_and_latest(self):
        registry = FakeRegistry({
            "lib": make_document("lib", {"1.0.0": {}, "1.5.0": {}, "2.0.0": {}}),
        })
        root = PackageMetadata(
            name="root",
            version="1.0.0",
            dependencies={"lib": "^1.0.0"},
            dev_dependencies={"lib": "^2.0.0"},
            peer_dependencies={"ghost": "^1.0.0"},
        )

        entries = {e.name: e for e in await DependencyRiskWalker(registry, Assessor()).walk(root)}

        # Production wins over dev for the same name
        assert entries["lib"].dependency_type == DependencyType.PRODUCTION
        assert (entries["lib"].version, entries["lib"].latest) == ("1.5.0", "2.0.0")
        assert entries["ghost"].dependency_type == DependencyType.PEER
        assert entries["ghost"].latest is None

    @pytest.mark.asyncio
    async def test_assessment_timeout_is_separate_from_fetch_timeout(self):
        """Test that a slow assessment survives when only the fetch timeout is short."""
        registry = FakeRegistry({"slow": make_document("slow", {"1.0.0": {}})})
        walker = DependencyRiskWalker(registry, Assessor(delay=0.05), timeout=0.01, assess_timeout=5.0)

        entries = await walker.walk(_root(slow="1.0.0"))

        assert entries[0].status == DependencyStatus.SCORED
        assert entries[0].score == 90

    @pytest.mark.asyncio
    async def test_alias_is_missing(self):
        registry = FakeRegistry({"wrapper": make_document("wrapper", {"1.0.0": {}})})
        entries = await DependencyRiskWalker(registry, Assessor()).walk(_root(wrapper="npm:other@^1.0.0"))
        assert entries[0].status == DependencyStatus.MISSING
