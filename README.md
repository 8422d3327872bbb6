# vehicle_dash

An instrument cluster model and a vehicle simulator that talk to each other
over a small SOME/IP-style event protocol on UDP. Each side can run on its
own host.

The simulator turns control input into two-byte readings: a data type
followed by a value. The dashboard subscribes to those readings and stores
them in its cluster: speed, RPM, fuel, temperature and the left and right
turn indicators. The cluster also runs an odometer from the current speed.

## Installation

```
pip install .
```

For the test suite:

```
pip install ".[test]"
pytest
```

## Commands

### `vehicle-dash-simulator`

Offers the vehicle service (service `0x1234`, instance `0x5678`, event
`0x8778` in event group `0x4465`) and reads commands from standard input,
one per line:

- `speed N`, `rpm N`, `temp N`, `fuel N`: send a reading
- `left`, `right`: toggle that indicator and send 1 (on) or 0 (off)
- `quit` or `exit`: stop (end of input stops as well)

Options: `--bind HOST:PORT` (default `0.0.0.0:30509`), `--peer HOST:PORT`
(where offers are announced; none by default) and `--verbose` (log every
control change).

### `vehicle-dash-dashboard`

Builds the shared cluster, prints every gauge change as `name: value`, and
sets the start-up readings (speed 280, RPM 8, temperature 10, fuel 10).
After `--startup-delay` seconds (default 2) it zeroes the gauges, looks for
the vehicle service, subscribes to its event group once it is available, and
applies every notification to the cluster.

Options: `--bind HOST:PORT` (default `0.0.0.0:30510`), `--peer HOST:PORT`
(where the service is looked for; default `127.0.0.1:30509`),
`--startup-delay SECONDS` and `--verbose` (log every gauge assignment).

### `vehicle-dash-hello`

A greeting example with two roles:

- `vehicle-dash-hello server` offers the service and sends `Hello World 1`,
  `Hello World 2`, … every `--interval` seconds (default 1). The counter is a
  byte and wraps after 255. Options: `--bind` (default `0.0.0.0:30509`),
  `--peer`, `--interval`.
- `vehicle-dash-hello client` subscribes and prints `Received: …` for each
  greeting. Options: `--bind` (default `0.0.0.0:30510`), `--peer` (default
  `127.0.0.1:30509`).

With the defaults, start the simulator and then the dashboard on one host
and they find each other.

## Library use

```python
from vehicle_dash.protocol import DataType, VehicleData
from vehicle_dash.cluster import Cluster, format_distance
from vehicle_dash.dashboard import apply_vehicle_data

payload = VehicleData(DataType.SPEED, 120).encode()   # b"\x00\x78"
data = VehicleData.decode(payload)

cluster = Cluster()
cluster.connect("speed", lambda value: print("speed is now", value))
apply_vehicle_data(cluster, data)

cluster.tick()            # one second of travel at the current speed
print(cluster.total_distance)

print(format_distance(23_567_000))   # "23,567 km"
```

- `vehicle_dash.protocol`: `DataType`, `VehicleData` (`encode`, `decode`),
  `format_payload` and the service, instance, event and event group ids.
  `VehicleData.encode` truncates both fields to one byte, so values above 255
  wrap. `VehicleData.decode` raises `PayloadTooShortError` for payloads of
  fewer than two bytes.
- `vehicle_dash.cluster`: `Cluster`, whose gauges `speed`, `rpm`, `fuel`,
  `temp`, `l_value`, `r_value` and `total_distance` are plain attributes.
  `connect(prop, callback)` calls `callback(value)` on every assignment and
  raises `ValueError` for an unknown property. `start_odometer(interval)` and
  `stop_odometer()` run `tick()` in a background thread. `Cluster.instance()`
  and `Cluster.finalize()` manage one shared, already ticking cluster.
- `vehicle_dash.someip`: `Message` (`encode`, `decode`, SOME/IP header
  layout), `MessageType`, `SomeIpError` and `Application`, a UDP endpoint
  with `offer_service`, `offer_event`, `notify`, `request_service`,
  `request_event`, `subscribe`, `is_available`, `register_message_handler`,
  `register_availability_handler`, `start` (blocking receive loop) and
  `stop`.
- `vehicle_dash.dashboard`: `DashboardClient`, `apply_vehicle_data` (ignores
  type `UN`, raises `ValueError` for unknown types) and
  `describe_notification`.
- `vehicle_dash.simulator`: `VehicleSimulator`, the control panel. It takes
  any callable that accepts a `VehicleData`, for example
  `SimulatorService.send_data`, and its `set_speed`, `set_rpm`, `set_temp`,
  `set_fuel`, `press_left` and `press_right` each send and return a reading.
  `SimulatorService` offers the service and publishes readings, and
  `describe_request` formats requests sent to it.
- `vehicle_dash.hello`: `hello_message`, `run_server` and `run_client`.

## What this package does not do

- There is no graphical dashboard. The cluster is a model, and the dashboard
  command shows it as text lines on standard output.
- There is no simulator window with sliders and buttons. The simulator takes
  typed commands on standard input.
- Service discovery is a reduced control protocol (find, offer, stop offer,
  subscribe, unsubscribe) sent as unicast on service `0xFFFF`. It is not
  SOME/IP-SD, and it does not work with other SOME/IP stacks. There is no
  multicast, no TCP and no configuration file. Addresses are given on the
  command line.