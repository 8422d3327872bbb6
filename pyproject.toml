[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "vehicle_dash"
version = "0.1.0"
description = "Vehicle instrument cluster and simulator that exchange speed, RPM, fuel, temperature and indicator readings as SOME/IP-style events over UDP"
requires-python = ">=3.10"
keywords = ["some-ip", "automotive", "instrument-cluster", "vehicle", "simulator", "events", "udp"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: Console",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Embedded Systems",
]
dependencies = []

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
vehicle-dash-hello = "vehicle_dash.hello:main"
vehicle-dash-dashboard = "vehicle_dash.dashboard:main"
vehicle-dash-simulator = "vehicle_dash.simulator:main"

[tool.hatch.build.targets.wheel]
packages = ["vehicle_dash"]

[tool.pytest.ini_options]
addopts = "-ra"
