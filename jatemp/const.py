# JATEMP thermometer firmware GATT layout:
# Service: 569a1101-b87f-490c-92cb-11ba5ea5167c
#   Characteristic: 569a2000-b87f-490c-92cb-11ba5ea5167c
#     Properties: ['read', 'notify']
#     Payload: UTF-8 text terminated by "\r\n", f.e. "23.5 PW\r\n"

UUID_SERVICE_THERMOMETER = "569A1101-B87F-490C-92CB-11BA5EA5167C"
UUID_CHARACTERISTIC_READING = "569A2000-B87F-490C-92CB-11BA5EA5167C"

BLUETOOTH_DEVICE_NAME = "JATEMP"

PAYLOAD_MARKER = "PW"
PAYLOAD_LINE_ENDING = "\r\n"

STATUS_POWERED_ON = "Powered on"
STATUS_DEVICE_FOUND = "Device found"
STATUS_CONNECTED = "Connected"
STATUS_CHARACTERISTIC_OK = "Characteristic OK"
STATUS_RESTART_SCAN = "Restart Scan"

# seconds between adapter availability probes after scanning failed to start
ADAPTER_PROBE_INTERVAL = 5
