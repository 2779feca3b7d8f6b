"""Streamlit entrypoint delegating to the Home page."""

import logging
from importlib import import_module

import streamlit as st

from modal_builder.settings import log_level


def configure_logging() -> None:
    """Send library logs to stderr at the configured level."""

    level = getattr(logging, log_level(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def main() -> None:
    """Render the Home page when the app entrypoint is loaded."""

    configure_logging()
    try:
        home_module = import_module("Home")
    except ModuleNotFoundError:
        st.error("Home page module not found.")
        return

    home_module.main()


if __name__ == "__main__":
    main()
