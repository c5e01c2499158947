from audio_io import create_pyaudio, list_output_devices


def main():
    pa = create_pyaudio()
    print("Output devices (set OUTPUT_DEVICE_INDEX):")
    for device in list_output_devices(pa):
        print(f"[{device.index}] {device.name} rate={device.rate} channels={device.channels}")
    pa.terminate()


if __name__ == "__main__":
    main()
