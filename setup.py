from setuptools import setup, find_packages

setup(
    name='robot-bridge',
    version='1.0.0',
    packages=find_packages(exclude=['test', 'test.*']),
    python_requires='>=3.9',
    install_requires=[
        'fastapi>=0.104.0',
        'uvicorn>=0.24.0',
        'websockets>=12.0',
        'paho-mqtt>=2.0.0',
    ],
    extras_require={
        'test': [
            'pytest>=7.0',
            'pytest-asyncio>=0.21',
            'httpx>=0.24',
        ],
    },
    zip_safe=True,
    description='MQTT to WebSocket bridge for remote robot control',
    license='MIT',
    entry_points={
        'console_scripts': [
            'robot-bridge = robot_bridge.main:main',
        ],
    },
)
