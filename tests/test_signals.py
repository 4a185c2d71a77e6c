"""Tests for external signal providers."""

import pytest

from printwatch.monitoring.signals import (
    LatestVisualSignal,
    LayerSnapshotStore,
    StaticSnapshotProvider,
    StaticVisualSignal,
    StructuralRiskSnapshot,
    StructuralSnapshotProvider,
    VisualPattern,
    VisualSignal,
)


class TestStructuralRiskSnapshot:
    """Tests for StructuralRiskSnapshot."""

    def test_defaults(self):
        snapshot = StructuralRiskSnapshot()
        assert snapshot.overhang_count == 0
        assert snapshot.solid_infill_fraction == 0.0
        assert snapshot.has_support_material is False

    def test_values_are_normalized(self):
        snapshot = StructuralRiskSnapshot(overhang_count=-3, solid_infill_fraction=1.5)
        assert snapshot.overhang_count == 0
        assert snapshot.solid_infill_fraction == 1.0

    def test_from_dict_camel_case(self):
        snapshot = StructuralRiskSnapshot.from_dict({
            "overhangCount": 4,
            "bridgeCount": 2,
            "smallFeatureCount": 1,
            "solidInfillFraction": 0.5,
            "hasSupportMaterial": True,
        })
        assert snapshot == StructuralRiskSnapshot(4, 2, 1, 0.5, True)

    def test_from_dict_short_keys(self):
        snapshot = StructuralRiskSnapshot.from_dict({"overhangs": 7, "supportMaterial": 1})
        assert snapshot.overhang_count == 7
        assert snapshot.has_support_material is True

    def test_to_dict(self):
        data = StructuralRiskSnapshot(overhang_count=2).to_dict()
        assert data["overhang_count"] == 2
        assert StructuralRiskSnapshot.from_dict(data) == StructuralRiskSnapshot(overhang_count=2)


class TestLayerSnapshotStore:
    """Tests for LayerSnapshotStore."""

    def test_is_provider(self):
        assert isinstance(LayerSnapshotStore(), StructuralSnapshotProvider)

    def test_missing_layer_is_empty(self):
        assert LayerSnapshotStore().snapshot_for(12) == StructuralRiskSnapshot()

    def test_push_and_lookup(self):
        store = LayerSnapshotStore()
        store.push(3, StructuralRiskSnapshot(bridge_count=2))

        assert store.snapshot_for(3).bridge_count == 2
        assert store.snapshot_for(4).bridge_count == 0
        assert len(store) == 1

    def test_negative_layer_rejected(self):
        with pytest.raises(ValueError):
            LayerSnapshotStore().push(-1, StructuralRiskSnapshot())

    def test_clear(self):
        store = LayerSnapshotStore()
        store.push(1, StructuralRiskSnapshot(overhang_count=1))
        store.clear()
        assert len(store) == 0

    def test_static_provider(self):
        provider = StaticSnapshotProvider(StructuralRiskSnapshot(overhang_count=5))
        assert provider.snapshot_for(0).overhang_count == 5
        assert provider.snapshot_for(999).overhang_count == 5


class TestVisualSignal:
    """Tests for visual signal providers."""

    def test_confidence_clamped(self):
        assert VisualSignal(confidence=2.0).confidence == 1.0
        assert VisualSignal(confidence=-1.0).confidence == 0.0

    def test_latest_signal(self):
        provider = LatestVisualSignal()
        assert provider.current_signal().confidence == 0.0

        pattern = VisualPattern("spaghetti", 0.9, "Loose strands near nozzle")
        provider.push(0.6, [pattern])

        signal = provider.current_signal()
        assert signal.confidence == 0.6
        assert signal.patterns == (pattern,)

    def test_latest_signal_clear(self):
        provider = LatestVisualSignal()
        provider.push(0.6)
        provider.clear()
        assert provider.current_signal() == VisualSignal()

    def test_static_signal(self):
        assert StaticVisualSignal(0.4).current_signal().confidence == 0.4
