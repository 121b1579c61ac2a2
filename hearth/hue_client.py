import asyncio, logging
from typing import Any, Dict, List, Optional
import httpx
from .errors import CredentialRejectedError, UpstreamTimeoutError, UpstreamUnreachableError
from .models import Snapshot

log = logging.getLogger("hue")


class HueClient:
    """Thin CLIP v2 client for a local lighting bridge."""

    def __init__(self, timeout: float = 10, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.timeout = timeout
        self._transport = transport

    def _client(self, bridge_ip: str) -> httpx.AsyncClient:
        # bridges serve a self-signed certificate
        return httpx.AsyncClient(base_url=f"https://{bridge_ip}", verify=False,
                                 timeout=self.timeout, transport=self._transport)

    async def rest_get(self, bridge_ip: str, username: str, resource: str) -> List[Dict[str, Any]]:
        try:
            async with self._client(bridge_ip) as c:
                r = await c.get(f"/clip/v2/resource/{resource}",
                                headers={"hue-application-key": username})
        except httpx.TimeoutException as e:
            raise UpstreamTimeoutError(f"Bridge {bridge_ip} timed out") from e
        except httpx.HTTPError as e:
            raise UpstreamUnreachableError(f"Cannot connect to bridge at {bridge_ip}: {e}") from e
        if r.status_code in (401, 403):
            raise CredentialRejectedError(f"Bridge {bridge_ip} rejected the credential")
        if r.is_error:
            raise UpstreamUnreachableError(f"Bridge {bridge_ip} answered {r.status_code}")
        try:
            body = r.json()
        except ValueError as e:
            raise UpstreamUnreachableError(f"Bridge {bridge_ip} returned an invalid response") from e
        data = body.get("data", []) if isinstance(body, dict) else None
        if not isinstance(data, list):
            raise UpstreamUnreachableError(f"Bridge {bridge_ip} returned an invalid response")
        return data

    async def get_lights(self, bridge_ip, username):
        return await self.rest_get(bridge_ip, username, "light")

    async def get_rooms(self, bridge_ip, username):
        return await self.rest_get(bridge_ip, username, "room")

    async def get_devices(self, bridge_ip, username):
        return await self.rest_get(bridge_ip, username, "device")

    async def get_scenes(self, bridge_ip, username):
        return await self.rest_get(bridge_ip, username, "scene")

    async def get_zones(self, bridge_ip, username):
        return await self.rest_get(bridge_ip, username, "zone")

    async def get_motion(self, bridge_ip, username):
        return await self.rest_get(bridge_ip, username, "motion")

    async def get_resources(self, bridge_ip: str, username: str) -> Dict[str, List[Dict[str, Any]]]:
        lights, rooms, devices, scenes, zones, motion = await asyncio.gather(
            self.get_lights(bridge_ip, username),
            self.get_rooms(bridge_ip, username),
            self.get_devices(bridge_ip, username),
            self.get_scenes(bridge_ip, username),
            self._optional(self.get_zones(bridge_ip, username), "zones"),
            self._optional(self.get_motion(bridge_ip, username), "motion sensors"),
        )
        return {"lights": lights, "rooms": rooms, "devices": devices,
                "scenes": scenes, "zones": zones, "motion": motion}

    async def _optional(self, coro, what: str):
        # zones and motion sensors are nice-to-have; the dashboard works without them
        try:
            return await coro
        except (UpstreamTimeoutError, UpstreamUnreachableError) as e:
            log.warning("Failed to fetch %s: %s", what, e)
            return []


def _name(resource: Dict[str, Any], default: str = "") -> str:
    return (resource.get("metadata") or {}).get("name") or default


def normalize_light(light: Dict[str, Any]) -> Dict[str, Any]:
    color = light.get("color") or {}
    temperature = light.get("color_temperature") or {}
    return {
        "id": light["id"],
        "name": _name(light, light["id"]),
        "on": bool((light.get("on") or {}).get("on")),
        "brightness": (light.get("dimming") or {}).get("brightness", 0),
        "xy": color.get("xy"),
        "mirek": temperature.get("mirek"),
    }


def _stats(lights: List[Dict[str, Any]]) -> Dict[str, Any]:
    on = [l for l in lights if l["on"]]
    avg = round(sum(l["brightness"] for l in on) / len(on)) if on else 0
    return {"total": len(lights), "on": len(on), "averageBrightness": avg}


def _scenes_for(scenes, group_id):
    return [{"id": s["id"], "name": _name(s, s["id"])}
            for s in scenes if (s.get("group") or {}).get("rid") == group_id]


def build_snapshot(resources: Dict[str, List[Dict[str, Any]]]) -> Snapshot:
    """Aggregate raw CLIP v2 resources into the dashboard snapshot tree."""
    lights = {l["id"]: normalize_light(l) for l in resources.get("lights", [])}
    lights_by_device: Dict[str, List[Dict[str, Any]]] = {}
    for raw in resources.get("lights", []):
        owner = (raw.get("owner") or {}).get("rid")
        if owner:
            lights_by_device.setdefault(owner, []).append(lights[raw["id"]])
    scenes = resources.get("scenes", [])
    device_names = {d["id"]: _name(d, d["id"]) for d in resources.get("devices", [])}

    rooms = []
    for room in resources.get("rooms", []):
        members = []
        for child in room.get("children", []):
            if child.get("rtype") == "device":
                members.extend(lights_by_device.get(child.get("rid"), []))
        rooms.append({
            "id": room["id"],
            "name": _name(room, room["id"]),
            "stats": _stats(members),
            "devices": members,
            "scenes": _scenes_for(scenes, room["id"]),
        })

    zones = []
    for zone in resources.get("zones", []):
        members = [lights[c["rid"]] for c in zone.get("children", [])
                   if c.get("rtype") == "light" and c.get("rid") in lights]
        zones.append({
            "id": zone["id"],
            "name": _name(zone, zone["id"]),
            "stats": _stats(members),
            "lights": [l["id"] for l in members],
            "scenes": _scenes_for(scenes, zone["id"]),
        })

    motion_zones = []
    for sensor in resources.get("motion", []):
        owner = (sensor.get("owner") or {}).get("rid")
        motion_zones.append({
            "id": sensor["id"],
            "name": device_names.get(owner, sensor["id"]),
            "enabled": bool(sensor.get("enabled", True)),
            "motion": bool((sensor.get("motion") or {}).get("motion")),
        })

    all_lights = list(lights.values())
    return {
        "summary": {
            "totalLights": len(all_lights),
            "lightsOn": sum(1 for l in all_lights if l["on"]),
            "roomCount": len(rooms),
            "sceneCount": len(scenes),
        },
        "rooms": rooms,
        "zones": zones,
        "motionZones": motion_zones,
    }
