"""Internal constants shared across the library."""

USER_AGENT = "GoveeHome/5.6.01 (com.ihoment.GoVeeSensor; build:2; iOS 16.5.0) Alamofire/5.6.4"
APP_VERSION = "5.6.01"

# ------------------------------------------------------------------
# Radio / wire framing (protocol v1.2)
# ------------------------------------------------------------------

FRAME_SIZE = 20
FRAME_BODY_SIZE = FRAME_SIZE - 1

HEADER_STATUS = 0xAA
HEADER_MULTI = 0xA3
HEADER_COMMAND = 0x33

FINAL_FRAGMENT_INDEX = 0xFF
FRAGMENT_PAYLOAD_SIZE = 16

# Scene commands: payload lines carry 17 data bytes after the 2-byte header.
SCENE_LINE_DATA_SIZE = 17
SCENE_LINE_MARKER = 0x01

CMD_POWER = 0x01
CMD_MODE = 0x05
MODE_SCENE = 0x04

# ------------------------------------------------------------------
# LAN protocol
# ------------------------------------------------------------------

LAN_CMD_SCAN = "scan"
LAN_CMD_STATUS = "devStatus"
LAN_CMD_TURN = "turn"
LAN_CMD_BRIGHTNESS = "brightness"
LAN_CMD_COLOR = "colorwc"
LAN_CMD_PT_REAL = "ptReal"

# ------------------------------------------------------------------
# Platform API capabilities
# ------------------------------------------------------------------

PLATFORM_CONTROL_ENDPOINT = "/router/api/v1/device/control"
PLATFORM_STATE_ENDPOINT = "/router/api/v1/device/state"

CAP_ON_OFF = "devices.capabilities.on_off"
CAP_RANGE = "devices.capabilities.range"
CAP_COLOR_SETTING = "devices.capabilities.color_setting"
CAP_DYNAMIC_SCENE = "devices.capabilities.dynamic_scene"

INSTANCE_POWER = "powerSwitch"
INSTANCE_BRIGHTNESS = "brightness"
INSTANCE_COLOR_RGB = "colorRgb"
INSTANCE_COLOR_TEMPERATURE = "colorTemperatureK"
INSTANCE_LIGHT_SCENE = "lightScene"
INSTANCE_ONLINE = "online"
