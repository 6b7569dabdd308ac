from pathlib import Path

from streamlit.testing.v1 import AppTest

APP_PATH = Path(__file__).resolve().parent.parent / "streamlit_app.py"


def button_labels(app):
    return [button.label for button in app.button]


def test_resume_offered_after_stepping():
    app = AppTest.from_file(str(APP_PATH), default_timeout=10).run()
    assert not app.exception
    assert "▶️ Start" in button_labels(app)

    step = next(button for button in app.button if button.label == "Step")
    step.click().run()
    assert not app.exception
    labels = button_labels(app)
    assert "▶️ Resume" in labels
    assert "▶️ Start" not in labels
    assert app.session_state["simulator"].cycle == 1
