from setuptools import setup, find_packages

setup(
    name="narrated-video-pipeline",
    version="0.1.0",
    description="Narrated video rendering service: speech synthesis, audio assembly and Ken Burns composition",
    packages=find_packages(where="src"),
    package_dir={"": "src"},
    python_requires=">=3.9",
    install_requires=[
        "fastapi>=0.110.0",
        "uvicorn>=0.27.0",
        "python-multipart>=0.0.9",
        "requests>=2.31.0",
        "urllib3>=2.0.0",
        "pydantic>=2.0.0",
        "pydantic-settings>=2.0.0",
        "python-dotenv>=1.0.0",
        "structlog>=23.1.0",
        "numpy>=1.24.0",
        "soundfile>=0.12.1",
        "edge-tts>=6.1.9",
        "aiohttp>=3.9.0",
        "google-cloud-texttospeech>=2.16.0",
        "google-auth>=2.23.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.4.0",
            "hypothesis>=6.82.0",
            "httpx>=0.25.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "narrated-video-server=narrated_video_pipeline.main:main",
        ],
    },
)
