from setuptools import setup, find_packages

setup(
    name='hand-track-robot-arm',
    version='1.0.0',
    packages=find_packages(include=['client_arm_control', 'relay_gateway']),
    python_requires='>=3.9',
    install_requires=[
        'setuptools',
        'numpy>=1.24',
        'websockets>=13.0',
        'fastapi>=0.104.0',
        'uvicorn>=0.24.0',
        'paho-mqtt>=2.0',
    ],
    extras_require={
        'capture': [
            'opencv-python>=4.8',
            'mediapipe>=0.10',
        ],
        'test': [
            'pytest>=7.0',
            'pytest-asyncio>=0.23',
            'httpx>=0.25',
        ],
    },
    zip_safe=True,
    description='Hand tracking robot arm control client and relay gateway',
    license='MIT',
    entry_points={
        'console_scripts': [
            'arm_client = client_arm_control.main:main',
            'relay_gateway = relay_gateway.main:main',
        ],
    },
)
