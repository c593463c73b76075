"""Setup script for the voice assistant."""

from setuptools import setup, find_packages

setup(
    name="voice-assistant",
    version="1.0.0",
    description="Continuous spoken conversations with Gemini, with tab audio transcription",
    author="Your Name",
    packages=find_packages(include=['voice_assistant', 'voice_assistant.*', 'mocks', 'mocks.*'],
                           exclude=['voice_assistant.tests', 'voice_assistant.tests.*']),
    python_requires=">=3.11",
    install_requires=[
        "python-dotenv>=1.0.0",
        "google-generativeai>=0.3.0",
        "structlog>=23.0.0",
        "click>=8.0.0",
        "numpy>=1.24.0",
        "sounddevice>=0.4.6",
        "soundfile>=0.12.1",
        "webrtcvad>=2.0.10",
    ],
    extras_require={
        "test": [
            "pytest>=7.4.0",
            "pytest-asyncio>=0.21.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "voice-assistant=voice_assistant.cli.main:cli",
        ],
    },
)
