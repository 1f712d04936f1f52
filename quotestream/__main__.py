from quotestream.cli import main

raise SystemExit(main())
