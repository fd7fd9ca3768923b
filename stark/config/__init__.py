"""Configuration: change sets, sources, encoders, a merging JSON reader and file storage."""