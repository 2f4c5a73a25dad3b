from music_relay.ingest.cli import main

main()
