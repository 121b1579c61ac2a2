# Synthetic upstream data for demo mode, in the same raw shape the real
# clients return so it flows through the same normalisation.
from typing import Any, Dict, List

DEMO_BRIDGE_ID = "demo-bridge"
DEMO_IDENTITY = "demo-user"


def _light(n: int, name: str, on: bool, brightness: float, **extra) -> Dict[str, Any]:
    light = {
        "id": f"light-{n}",
        "owner": {"rid": f"device-{n}", "rtype": "device"},
        "on": {"on": on},
        "dimming": {"brightness": brightness},
        "metadata": {"name": name},
    }
    light.update(extra)
    return light


def hue_resources() -> Dict[str, List[Dict[str, Any]]]:
    lights = [
        _light(1, "Floor Lamp", True, 100, color={"xy": {"x": 0.6915, "y": 0.3083}}),
        _light(2, "TV Backlight", True, 75, color={"xy": {"x": 0.1532, "y": 0.0475}}),
        _light(3, "Plant Light", True, 50, color={"xy": {"x": 0.17, "y": 0.7}}),
        _light(4, "Corner Lamp", True, 25, color={"xy": {"x": 0.5016, "y": 0.4152}}),
        _light(5, "Ceiling", False, 0, color={"xy": {"x": 0.3227, "y": 0.329}}),
        _light(6, "Kitchen Ceiling", True, 90, color_temperature={"mirek": 153}),
        _light(7, "Counter", True, 60, color_temperature={"mirek": 250}),
        _light(8, "Bedside", False, 0, color_temperature={"mirek": 370}),
    ]
    devices = [{"id": f"device-{n}", "metadata": {"name": l["metadata"]["name"]}}
               for n, l in enumerate(lights, start=1)]
    devices.append({"id": "device-sensor-1", "metadata": {"name": "Hallway Sensor"}})

    def room(rid, name, members):
        return {"id": rid, "metadata": {"name": name},
                "children": [{"rid": f"device-{n}", "rtype": "device"} for n in members]}

    return {
        "lights": lights,
        "devices": devices,
        "rooms": [
            room("room-living", "Living Room", [1, 2, 3, 4, 5]),
            room("room-kitchen", "Kitchen", [6, 7]),
            room("room-bedroom", "Bedroom", [8]),
        ],
        "scenes": [
            {"id": "scene-relax", "metadata": {"name": "Relax"}, "group": {"rid": "room-living", "rtype": "room"}},
            {"id": "scene-bright", "metadata": {"name": "Bright"}, "group": {"rid": "room-kitchen", "rtype": "room"}},
            {"id": "scene-night", "metadata": {"name": "Nightlight"}, "group": {"rid": "zone-downstairs", "rtype": "zone"}},
        ],
        "zones": [
            {"id": "zone-downstairs", "metadata": {"name": "Downstairs"},
             "children": [{"rid": f"light-{n}", "rtype": "light"} for n in (1, 2, 6, 7)]},
        ],
        "motion": [
            {"id": "motion-1", "owner": {"rid": "device-sensor-1", "rtype": "device"},
             "enabled": True, "motion": {"motion": False, "motion_valid": True}},
        ],
    }


def hive_products() -> List[Dict[str, Any]]:
    return [
        {"id": "hive-heating-1", "type": "heating",
         "props": {"temperature": 19.5, "working": True, "online": True},
         "state": {"target": 21, "mode": "SCHEDULE"}},
        {"id": "hive-hotwater-1", "type": "hotwater",
         "props": {"working": False},
         "state": {"mode": "OFF"}},
    ]
