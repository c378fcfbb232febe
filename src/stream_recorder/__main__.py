from stream_recorder.cli import main

main()
