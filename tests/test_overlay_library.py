import tempfile
import unittest
from pathlib import Path

from orchestrator import closing
from orchestrator.decision_engine import DISPOSITION_OVERLAYS, PUSHBACK_OVERLAYS
from orchestrator.overlays import OverlayLibrary, get_overlay_library


# Overlay keys the decision engine names directly
ENGINE_OVERLAYS = [
    "post_completion", "closing_handoff", "turn_limit_close", "frustration_close", "graceful_exit",
    "containment", "boundary_close", "rudeness_boundary", "frustration_repair", "low_engagement_exit",
    "tactical_redirect", "hypothesis_pivot", "context_gathering", "probe_deeper", "reflect_insight",
    "exploration", "surface_contradiction", "validation", "diagnosis_consent", "diagnosis_delivery",
    "build_criteria", "stress_test", "pre_commitment", "explore_readiness", "blocker_check",
    "cross_map", "depth_inquiry", "hypothesis_forming", "frustration_aware", "trust_repair",
]


class TestOverlayLibrary(unittest.TestCase):
    def test_every_referenced_overlay_exists(self):
        library = get_overlay_library()
        referenced = (
            ENGINE_OVERLAYS
            + PUSHBACK_OVERLAYS
            + list(DISPOSITION_OVERLAYS.values())
            + [step.overlay for step in closing.CLOSING_STEPS.values()]
        )

        for key in referenced:
            self.assertIn(key, library, key)
            self.assertTrue(library.get(key))

    def test_base_identity_loaded(self):
        self.assertIn("Mira", get_overlay_library().base_identity)

    def test_library_is_loaded_once(self):
        self.assertIs(get_overlay_library(), get_overlay_library())

    def test_library_is_read_only(self):
        library = get_overlay_library()

        with self.assertRaises(TypeError):
            library.overlays["exploration"] = "changed"

    def test_from_directory(self):
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            (root / "identity.txt").write_text("You are Mira.", encoding="utf-8")
            overlay_dir = root / "overlays"
            overlay_dir.mkdir()
            (overlay_dir / "calm.txt").write_text("  Stay calm.\n", encoding="utf-8")
            (overlay_dir / "notes.md").write_text("ignored", encoding="utf-8")

            library = OverlayLibrary.from_directory(overlay_dir, root / "identity.txt")

        self.assertEqual(library.keys(), ["calm"])
        self.assertEqual(library.get("calm"), "Stay calm.")
        self.assertIsNone(library.get("missing"))
        self.assertEqual(library.base_identity, "You are Mira.")
        self.assertEqual(len(library), 1)


if __name__ == "__main__":
    unittest.main()
