import sys
from pathlib import Path

from media.frames import parse_frame
from protocol.pcap import read_pcap

path = Path(sys.argv[1] if len(sys.argv) > 1 else "media.pcap")
capture = read_pcap(path.read_bytes())

print("records:", len(capture))
print("linktype:", capture.linktype)
print("snaplen:", capture.snaplen)

for record in capture:
    header, payload = parse_frame(record.data)
    print(
        f"{record.ts_sec}.{record.ts_usec:06d}",
        f"pt={header.payload_type}",
        f"seq={header.sequence_number}",
        f"ts={header.timestamp}",
        f"m={int(header.marker)}",
        f"ssrc={header.ssrc:#010x}",
        f"payload={payload[:4].hex()}{'...' if len(payload) > 4 else ''}",
    )
